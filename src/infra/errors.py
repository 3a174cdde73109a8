"""Custom exception hierarchy for Toolsmith.

All application-specific exceptions inherit from ToolsmithError,
which carries an error code that tool results and call records expose.

Only validation and security failures are raised out of a tool call.
Partial I/O failures, budget overflow and cancellation are outcomes,
not exceptions (see src.tools.output_budget and src.tools.base).
"""

from __future__ import annotations


class ToolsmithError(Exception):
    """Base exception for all Toolsmith errors."""

    def __init__(self, message: str, *, code: str = "INTERNAL_ERROR") -> None:
        super().__init__(message)
        self.code = code


class ToolError(ToolsmithError):
    """Errors in the tool framework."""

    def __init__(self, message: str, *, code: str = "TOOL_ERROR") -> None:
        super().__init__(message, code=code)


class ToolValidationError(ToolError):
    """Tool parameters failed schema or semantic validation.

    Never reaches execute() and is never retried automatically.
    """

    def __init__(self, tool_name: str, errors: list[str]) -> None:
        self.tool_name = tool_name
        self.errors = list(errors)
        detail = "; ".join(self.errors) or "invalid parameters"
        super().__init__(
            f"Invalid parameters for {tool_name}: {detail}", code="INVALID_ARGS"
        )


class ToolNotFoundError(ToolError, KeyError):
    """Lookup of a tool name that is not registered."""

    def __init__(self, tool_name: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"Tool not registered: {tool_name}", code="UNKNOWN_TOOL")

    def __str__(self) -> str:
        return self.args[0]


class DuplicateToolError(ToolError, ValueError):
    """A tool with the same name is already registered."""

    def __init__(self, tool_name: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"Tool already registered: {tool_name}", code="DUPLICATE_TOOL")


class SecurityViolation(ToolError):
    """Execution refused for security reasons.

    Raised when a path escapes the workspace, a shell command is rejected,
    or a fetch is redirected to a target that needs confirmation. The
    violation is logged; callers must never retry with relaxed checks.
    """

    def __init__(self, message: str, *, target: str = "") -> None:
        self.target = target
        super().__init__(message, code="SECURITY_VIOLATION")


class ContextError(ToolsmithError):
    """Errors while assembling hierarchical context."""

    def __init__(self, message: str, *, code: str = "CONTEXT_ERROR") -> None:
        super().__init__(message, code=code)
