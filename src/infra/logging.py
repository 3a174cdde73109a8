"""structlog setup for hosts embedding the execution core.

Tools and workspace components only call structlog.get_logger(); the host
calls setup_logging() once. Events emitted while a tool call runs carry
the call's identity through tool_call_context(), which binds it as
context variables for the current task.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import structlog


def setup_logging(*, json_output: bool = True, log_level: str = "INFO") -> None:
    """Configure structlog for the execution core.

    Args:
        json_output: JSON lines if True, otherwise the structlog dev console renderer.
        log_level: Minimum level to emit (DEBUG, INFO, WARNING, ERROR).
    """
    level = logging.getLevelNamesMapping().get(log_level.upper())
    if level is None:
        raise ValueError(f"Unknown log level: {log_level}")

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def tool_call_context(*, tool_name: str, call_id: str = "") -> Iterator[None]:
    """Tag every event logged inside the block with the tool call it belongs to.

    Bindings are restored on exit, so concurrent calls in separate tasks
    never see each other's identity.
    """
    bindings = {"tool_name": tool_name}
    if call_id:
        bindings["call_id"] = call_id
    with structlog.contextvars.bound_contextvars(**bindings):
        yield
