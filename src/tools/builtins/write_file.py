from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from src.tools.base import DeclarativeTool, RiskLevel, ToolInvocation, ToolResult
from src.tools.file_utils import DEFAULT_ENCODING

if TYPE_CHECKING:
    from src.infra.cancellation import CancellationToken

logger = structlog.get_logger()


def _write(path: Path, content: str) -> bool:
    """Write content, creating parent directories. Returns True if the file is new."""
    created = not path.exists()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding=DEFAULT_ENCODING)
    return created


class WriteFileInvocation(ToolInvocation):
    def get_description(self) -> str:
        return f"Write {len(self.params['content'])} character(s) to {self.params['file_path']}"

    def should_confirm_execute(self) -> bool:
        return True

    async def execute(self, token: CancellationToken) -> ToolResult:
        ctx = self.context
        target = ctx.workspace.require_within(
            ctx.resolve_path(self.params["file_path"]), tool_name="write_file"
        )
        display = ctx.display_path(target)
        if target.is_dir():
            return ToolResult.failure(
                "TARGET_IS_DIRECTORY", f"Path is a directory, not a file: {display}"
            )

        if token.is_cancelled:
            return ToolResult.cancelled()
        try:
            created = await asyncio.to_thread(_write, target, self.params["content"])
        except OSError as e:
            logger.warning("write_file_failed", path=str(target), error=str(e))
            return ToolResult.failure("WRITE_ERROR", f"Error writing to file {display}: {e}")

        logger.info("file_written", path=str(target), created=created)
        message = (
            f"Successfully created and wrote to new file: {display}"
            if created
            else f"Successfully overwrote file: {display}"
        )
        return ToolResult(machine_content=message, human_summary=message)


class WriteFileTool(DeclarativeTool):
    """Create or overwrite one file inside the workspace. Always confirmed."""

    @property
    def name(self) -> str:
        return "write_file"

    @property
    def display_name(self) -> str:
        return "WriteFile"

    @property
    def description(self) -> str:
        return (
            "Writes content to a file within the workspace, creating parent directories "
            "as needed. Existing files are overwritten. The user must approve every write."
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "file_path": {
                    "type": "string",
                    "minLength": 1,
                    "description": (
                        "Path of the file to write, absolute or relative to the target directory."
                    ),
                },
                "content": {
                    "type": "string",
                    "description": "The full content to write.",
                },
            },
            "required": ["file_path", "content"],
        }

    def validate_params(self, params: dict) -> list[str]:
        if not params["file_path"].strip():
            return ["file_path: must not be blank"]
        return []

    def create_invocation(self, params: dict) -> WriteFileInvocation:
        return WriteFileInvocation(self, params, self.context)
