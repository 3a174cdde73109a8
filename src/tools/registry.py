from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from src.infra.errors import DuplicateToolError, ToolNotFoundError

if TYPE_CHECKING:
    from src.tools.base import DeclarativeTool, ToolInvocation

logger = structlog.get_logger()


class ToolRegistry:
    """Name-indexed catalog of tools. The single entry point for the agent loop."""

    def __init__(self) -> None:
        self._tools: dict[str, DeclarativeTool] = {}

    def register(self, tool: DeclarativeTool) -> None:
        """Register a tool. Raises DuplicateToolError if the name is taken."""
        if tool.name in self._tools:
            raise DuplicateToolError(tool.name)
        self._tools[tool.name] = tool
        logger.info("tool_registered", tool_name=tool.name, risk_level=tool.risk_level.value)

    def get(self, name: str) -> DeclarativeTool:
        """Get a tool by name. Raises ToolNotFoundError if not registered."""
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def list_tools(self) -> list[DeclarativeTool]:
        """Registered tools in registration order."""
        return list(self._tools.values())

    def get_tools_schema(self) -> list[dict]:
        """Return tools in OpenAI function calling format.

        Output format:
        [{"type": "function", "function": {"name": ..., "description": ..., "parameters": ...}}]
        """
        return [tool.function_schema() for tool in self._tools.values()]

    def prepare(self, name: str, params: Any) -> ToolInvocation:
        """Lookup + validate + build.

        Raises ToolNotFoundError or ToolValidationError; nothing executes here.
        """
        return self.get(name).build(params)
