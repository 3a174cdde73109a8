from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog
from jsonschema import Draft202012Validator

from src.infra.errors import ToolValidationError

if TYPE_CHECKING:
    from src.infra.cancellation import CancellationToken
    from src.tools.context import ToolContext

logger = structlog.get_logger()

Part = str | dict[str, Any]


class RiskLevel(StrEnum):
    """Tool-level risk classification used for confirmation gating.

    Undeclared tools default to 'high' (fail-closed): their invocations ask
    for confirmation unless the tool overrides should_confirm_execute().
    """

    low = "low"
    high = "high"


class ToolOutcome(StrEnum):
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


@dataclass
class ToolResult:
    """What an invocation returns.

    machine_content is what the model consumes (text or a list of parts);
    human_summary is what a human-facing surface displays, including skip
    reasons.
    """

    machine_content: str | list[Part]
    human_summary: str
    outcome: ToolOutcome = ToolOutcome.completed
    error_code: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == ToolOutcome.completed

    @classmethod
    def failure(cls, code: str, message: str, *, summary: str | None = None) -> ToolResult:
        return cls(
            machine_content=f"Error: {message}",
            human_summary=summary or f"Error: {message}",
            outcome=ToolOutcome.failed,
            error_code=code,
        )

    @classmethod
    def cancelled(cls, summary: str = "Cancelled before completion.") -> ToolResult:
        return cls(
            machine_content="Tool execution was cancelled by the user.",
            human_summary=summary,
            outcome=ToolOutcome.cancelled,
        )


class ToolInvocation(ABC):
    """One validated, parameter-bound unit of work. Created per call."""

    def __init__(self, tool: DeclarativeTool, params: dict, context: ToolContext) -> None:
        self._tool = tool
        self._params = params
        self._context = context

    @property
    def tool(self) -> DeclarativeTool:
        return self._tool

    @property
    def params(self) -> dict:
        return self._params

    @property
    def context(self) -> ToolContext:
        return self._context

    @abstractmethod
    def get_description(self) -> str:
        """Deterministic, side-effect-free preview of what execute() will do."""
        ...

    def should_confirm_execute(self) -> bool:
        """Whether a human must approve before execute(). Policy hook only.

        The agent loop honours it; the framework does not enforce it.
        """
        return self._tool.risk_level == RiskLevel.high

    @abstractmethod
    async def execute(self, token: CancellationToken) -> ToolResult:
        """Perform the bounded work, observing token at each I/O boundary."""
        ...


class DeclarativeTool(ABC):
    """Named, schema-validated factory for ToolInvocations.

    Instances are immutable once registered; per-call state lives on the
    invocation.
    """

    def __init__(self, context: ToolContext) -> None:
        self._context = context
        Draft202012Validator.check_schema(self.parameters)
        self._validator = Draft202012Validator(self.parameters)

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name used in function calling."""
        ...

    @property
    def display_name(self) -> str:
        return self.name

    @property
    @abstractmethod
    def description(self) -> str:
        """Description advertised to the model."""
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict:
        """JSON Schema describing the tool's input parameters."""
        ...

    @property
    def risk_level(self) -> RiskLevel:
        """Fail-closed default: high. Read-only tools declare low."""
        return RiskLevel.high

    @property
    def context(self) -> ToolContext:
        return self._context

    def function_schema(self) -> dict:
        """Advertised capability in OpenAI function calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def validate(self, params: Any) -> ToolValidationError | None:
        """Schema check, then tool-specific checks. Returns the error, never raises it."""
        if not isinstance(params, dict):
            return ToolValidationError(
                self.name, [f"expected an object, got {type(params).__name__}"]
            )
        messages = [
            f"{'.'.join(str(p) for p in error.absolute_path) or 'params'}: {error.message}"
            for error in sorted(
                self._validator.iter_errors(params),
                key=lambda e: [str(p) for p in e.absolute_path],
            )
        ]
        if not messages:
            messages = self.validate_params(params)
        if messages:
            return ToolValidationError(self.name, messages)
        return None

    def validate_params(self, params: dict) -> list[str]:
        """Semantic checks beyond the schema. Runs only when the schema passes."""
        return []

    def build(self, params: Any) -> ToolInvocation:
        """Validate and construct an invocation. No I/O.

        Raises ToolValidationError; no invocation is constructed on failure.
        """
        error = self.validate(params)
        if error is not None:
            logger.info("tool_validation_failed", tool_name=self.name, errors=error.errors)
            raise error
        return self.create_invocation(params)

    @abstractmethod
    def create_invocation(self, params: dict) -> ToolInvocation:
        ...
