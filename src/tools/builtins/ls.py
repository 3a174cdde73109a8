from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from src.tools.base import DeclarativeTool, RiskLevel, ToolInvocation, ToolResult
from src.tools.output_budget import overflow_message
from src.workspace.ignore import IgnoreRuleSet, IgnoreSource

if TYPE_CHECKING:
    from src.infra.cancellation import CancellationToken


@dataclass(frozen=True)
class DirEntry:
    name: str
    path: Path
    is_dir: bool
    size: int


def _scan(directory: Path) -> list[DirEntry]:
    entries: list[DirEntry] = []
    with os.scandir(directory) as it:
        for entry in it:
            try:
                is_dir = entry.is_dir()
                size = 0 if is_dir else entry.stat().st_size
            except OSError:
                continue
            entries.append(DirEntry(entry.name, Path(entry.path), is_dir, size))
    return entries


class ListDirectoryInvocation(ToolInvocation):
    def get_description(self) -> str:
        return self.params["path"]

    async def execute(self, token: CancellationToken) -> ToolResult:
        ctx = self.context
        directory = ctx.workspace.require_within(
            ctx.resolve_path(self.params["path"]), tool_name="list_directory"
        )
        display = ctx.display_path(directory)
        if not directory.exists():
            return ToolResult.failure("FILE_NOT_FOUND", f"Directory not found: {display}")
        if not directory.is_dir():
            return ToolResult.failure("NOT_A_DIRECTORY", f"Path is not a directory: {display}")

        filtering = self.params.get("file_filtering_options") or {}
        respect_git_ignore = filtering.get(
            "respect_git_ignore", ctx.file_filtering.respect_git_ignore
        )
        respect_tool_ignore = filtering.get(
            "respect_tool_ignore", ctx.file_filtering.respect_tool_ignore
        )
        name_rules = IgnoreRuleSet()
        name_rules.add_source(
            IgnoreSource.custom, self.params.get("ignore", []), origin="ignore parameter"
        )

        if token.is_cancelled:
            return ToolResult.cancelled()
        try:
            scanned = await asyncio.to_thread(_scan, directory)
        except OSError as e:
            return ToolResult.failure("READ_ERROR", f"Error listing directory {display}: {e}")

        entries: list[DirEntry] = []
        git_ignored = 0
        tool_ignored = 0
        service = ctx.file_service
        for entry in scanned:
            if name_rules.matches(entry.name, is_dir=entry.is_dir):
                continue
            if respect_git_ignore and service.is_git_ignored(entry.path, is_dir=entry.is_dir):
                git_ignored += 1
                continue
            if respect_tool_ignore and service.is_tool_ignored(entry.path, is_dir=entry.is_dir):
                tool_ignored += 1
                continue
            entries.append(entry)

        if not entries and not (git_ignored or tool_ignored):
            return ToolResult(
                machine_content=f"Directory {display} is empty.",
                human_summary="Directory is empty.",
            )

        entries.sort(key=lambda e: (not e.is_dir, e.name))
        budget = ctx.new_budget()
        admitted = budget.admit(entries, unit="entry")
        if budget.count_overflowed:
            message = overflow_message(len(entries), budget.max_items, unit="entry")
            return ToolResult(machine_content=message, human_summary=message)

        lines = [f"Directory listing for {display}:"]
        lines.extend(f"[DIR] {e.name}" if e.is_dir else e.name for e in admitted)
        notes = []
        if len(admitted) < len(entries):
            notes.append(f"{len(entries) - len(admitted)} more not shown")
        if git_ignored:
            notes.append(f"{git_ignored} git-ignored")
        if tool_ignored:
            notes.append(f"{tool_ignored} ignored by {ctx.file_service.tool_ignore_filename}")
        if notes:
            lines.append("")
            lines.append(f"({', '.join(notes)})")

        summary = f"Listed {len(admitted)} item(s)."
        if git_ignored or tool_ignored:
            summary += f" ({git_ignored + tool_ignored} ignored)"
        return ToolResult(machine_content="\n".join(lines), human_summary=summary)


class ListDirectoryTool(DeclarativeTool):
    """List the entries of one workspace directory."""

    @property
    def name(self) -> str:
        return "list_directory"

    @property
    def display_name(self) -> str:
        return "ReadFolder"

    @property
    def description(self) -> str:
        return (
            "Lists the files and subdirectories directly within a directory of the "
            "workspace, directories first. Entries can be excluded with glob patterns."
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
                        "Directory to list, absolute or relative to the target directory."
                    ),
                },
                "ignore": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Glob patterns matched against entry names to leave out.",
                },
                "file_filtering_options": {
                    "type": "object",
                    "properties": {
                        "respect_git_ignore": {"type": "boolean"},
                        "respect_tool_ignore": {"type": "boolean"},
                    },
                    "additionalProperties": False,
                },
            },
            "required": ["path"],
        }

    def validate_params(self, params: dict) -> list[str]:
        if not params["path"].strip():
            return ["path: must not be blank"]
        return []

    def create_invocation(self, params: dict) -> ListDirectoryInvocation:
        return ListDirectoryInvocation(self, params, self.context)
