from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from src.infra.cancellation import CancellationToken
from src.infra.errors import (
    SecurityViolation,
    ToolError,
    ToolNotFoundError,
    ToolValidationError,
)
from src.infra.logging import tool_call_context
from src.tools.base import ToolOutcome, ToolResult

if TYPE_CHECKING:
    from src.tools.base import ToolInvocation
    from src.tools.registry import ToolRegistry

logger = structlog.get_logger()

ConfirmHandler = Callable[["ToolInvocation"], Awaitable[bool]]


class ToolCallState(StrEnum):
    requested = "requested"
    validated = "validated"
    awaiting_confirmation = "awaiting_confirmation"
    executing = "executing"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


TERMINAL_STATES = frozenset(
    {ToolCallState.completed, ToolCallState.failed, ToolCallState.cancelled}
)

_ALLOWED_TRANSITIONS: dict[ToolCallState, frozenset[ToolCallState]] = {
    ToolCallState.requested: frozenset(
        {ToolCallState.validated, ToolCallState.failed, ToolCallState.cancelled}
    ),
    ToolCallState.validated: frozenset({
        ToolCallState.awaiting_confirmation,
        ToolCallState.executing,
        ToolCallState.cancelled,
    }),
    ToolCallState.awaiting_confirmation: frozenset({
        ToolCallState.executing,
        ToolCallState.failed,
        ToolCallState.cancelled,
    }),
    ToolCallState.executing: TERMINAL_STATES,
}


def parse_arguments(raw: str | dict | None) -> tuple[dict, str | None]:
    """Accept a dict or a JSON object string. Returns (dict, error_message | None)."""
    if isinstance(raw, dict):
        return raw, None
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        return {}, f"Invalid JSON arguments: {e}"
    if not isinstance(parsed, dict):
        return {}, f"Expected dict arguments, got {type(parsed).__name__}"
    return parsed, None


@dataclass
class ToolCallRecord:
    """Lifecycle of one tool call: every state it passed through and its result."""

    call_id: str
    tool_name: str
    states: list[ToolCallState] = field(default_factory=lambda: [ToolCallState.requested])
    result: ToolResult | None = None

    @property
    def state(self) -> ToolCallState:
        return self.states[-1]

    def transition(self, new_state: ToolCallState) -> None:
        allowed = _ALLOWED_TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise ValueError(f"Invalid tool call transition: {self.state} -> {new_state}")
        self.states.append(new_state)

    def finish(self, result: ToolResult) -> ToolCallRecord:
        self.result = result
        self.transition(
            {
                ToolOutcome.completed: ToolCallState.completed,
                ToolOutcome.failed: ToolCallState.failed,
                ToolOutcome.cancelled: ToolCallState.cancelled,
            }[result.outcome]
        )
        return self


class ToolRunner:
    """Drives one tool call from request to a terminal state.

    Confirmation is asked through an async handler. Without a handler,
    calls that need confirmation are denied.
    """

    def __init__(self, registry: ToolRegistry, *, confirm: ConfirmHandler | None = None) -> None:
        self._registry = registry
        self._confirm = confirm

    async def run(
        self,
        name: str,
        params: str | dict | None,
        token: CancellationToken | None = None,
        *,
        call_id: str = "",
        timeout_s: float | None = None,
    ) -> ToolCallRecord:
        with tool_call_context(tool_name=name, call_id=call_id):
            return await self._run(name, params, token, call_id=call_id, timeout_s=timeout_s)

    async def _run(
        self,
        name: str,
        params: str | dict | None,
        token: CancellationToken | None,
        *,
        call_id: str,
        timeout_s: float | None,
    ) -> ToolCallRecord:
        record = ToolCallRecord(call_id=call_id, tool_name=name)
        token = token or CancellationToken()

        arguments, parse_error = parse_arguments(params)
        if parse_error is not None:
            record.transition(ToolCallState.failed)
            record.result = ToolResult.failure("INVALID_ARGS", parse_error)
            return record

        try:
            invocation = self._registry.prepare(name, arguments)
        except ToolNotFoundError as e:
            logger.warning("unknown_tool", tool_name=name)
            record.transition(ToolCallState.failed)
            record.result = ToolResult.failure(e.code, str(e))
            return record
        except ToolValidationError as e:
            record.transition(ToolCallState.failed)
            record.result = ToolResult.failure(e.code, str(e))
            return record
        record.transition(ToolCallState.validated)

        if token.is_cancelled:
            logger.info("tool_cancelled", tool_name=name, call_id=call_id, stage="validated")
            return record.finish(ToolResult.cancelled())

        if invocation.should_confirm_execute():
            record.transition(ToolCallState.awaiting_confirmation)
            approved = self._confirm is not None and await self._confirm(invocation)
            if not approved:
                logger.info(
                    "tool_confirmation_denied",
                    tool_name=name,
                    call_id=call_id,
                    description=invocation.get_description(),
                )
                record.transition(ToolCallState.failed)
                record.result = ToolResult.failure(
                    "CONFIRMATION_DENIED", f"Execution of {name} was not approved"
                )
                return record

        record.transition(ToolCallState.executing)
        if timeout_s is not None:
            token.cancel_after(timeout_s)
        try:
            result = await invocation.execute(token)
        except SecurityViolation as e:
            result = ToolResult.failure(e.code, str(e))
        except ToolError as e:
            logger.warning("tool_execution_failed", tool_name=name, error_code=e.code, error=str(e))
            result = ToolResult.failure(e.code, str(e))
        except Exception:
            logger.exception("tool_execution_failed", tool_name=name, call_id=call_id)
            result = ToolResult.failure("EXECUTION_ERROR", f"Tool {name} failed")
        finally:
            if timeout_s is not None:
                token.disarm()

        if result.outcome == ToolOutcome.cancelled:
            logger.info("tool_cancelled", tool_name=name, call_id=call_id, reason=token.reason)
        elif result.ok:
            logger.info("tool_executed", tool_name=name, call_id=call_id)
        return record.finish(result)

