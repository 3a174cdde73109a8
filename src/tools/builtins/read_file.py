from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from src.tools.base import DeclarativeTool, RiskLevel, ToolInvocation, ToolResult
from src.tools.file_utils import process_single_file_content

if TYPE_CHECKING:
    from src.infra.cancellation import CancellationToken

logger = structlog.get_logger()


class ReadFileInvocation(ToolInvocation):
    def get_description(self) -> str:
        path = self.params["path"]
        offset = self.params.get("offset")
        limit = self.params.get("limit")
        if offset is None and limit is None:
            return f"Read {path}"
        start = (offset or 0) + 1
        return f"Read {path} from line {start}" + (f" ({limit} lines)" if limit else "")

    async def execute(self, token: CancellationToken) -> ToolResult:
        ctx = self.context
        raw_path: str = self.params["path"]

        # Resolve first (follows symlinks), then check the boundary on the result
        target = ctx.workspace.require_within(ctx.resolve_path(raw_path), tool_name="read_file")
        display = ctx.display_path(target)

        if ctx.file_service.is_tool_ignored(target):
            return ToolResult.failure(
                "FILE_IGNORED",
                f"File is ignored by {ctx.file_service.tool_ignore_filename}: {display}",
            )

        if token.is_cancelled:
            return ToolResult.cancelled()
        result = await asyncio.to_thread(
            process_single_file_content,
            target,
            offset=self.params.get("offset"),
            limit=self.params.get("limit"),
        )
        if token.is_cancelled:
            return ToolResult.cancelled()

        if result.error:
            code = "FILE_NOT_FOUND" if not target.exists() else "READ_ERROR"
            if code == "READ_ERROR":
                logger.warning("read_file_failed", path=str(target), error=result.error)
            return ToolResult.failure(code, result.error)

        if not result.is_text:
            return ToolResult(
                machine_content=[result.content],
                human_summary=f"Read {result.file_type} file: {display}",
            )

        content = result.content
        if result.is_truncated:
            content = (
                f"[File content truncated: showing lines {result.first_line}-{result.last_line} "
                f"of {result.total_lines} total lines. Use offset/limit parameters to view more.]\n"
                f"{content}"
            )
            summary = (
                f"Read lines {result.first_line}-{result.last_line} "
                f"of {result.total_lines} from {display}"
            )
        else:
            summary = f"Read {result.total_lines} line(s) from {display}"
        return ToolResult(machine_content=content, human_summary=summary)


class ReadFileTool(DeclarativeTool):
    """Read one file inside the workspace with path safety enforcement."""

    @property
    def name(self) -> str:
        return "read_file"

    @property
    def display_name(self) -> str:
        return "ReadFile"

    @property
    def description(self) -> str:
        return (
            "Read the contents of a file within the workspace. Text files are returned "
            "line-windowed (use offset/limit for large files); images and PDFs are "
            "returned as inline data."
        )

    @property
    def risk_level(self) -> RiskLevel:
        return RiskLevel.low

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "minLength": 1,
                    "description": (
                        "Path to the file, absolute or relative to the target directory, "
                        "e.g. 'README.md' or 'src/main.py'."
                    ),
                },
                "offset": {
                    "type": "integer",
                    "minimum": 0,
                    "description": "0-based line number to start reading from.",
                },
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Maximum number of lines to read.",
                },
            },
            "required": ["path"],
        }

    def validate_params(self, params: dict) -> list[str]:
        if not params["path"].strip():
            return ["path: must not be blank"]
        return []

    def create_invocation(self, params: dict) -> ReadFileInvocation:
        return ReadFileInvocation(self, params, self.context)
