from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from src.tools.base import DeclarativeTool, RiskLevel, ToolInvocation, ToolResult
from src.tools.output_budget import overflow_message, summary_with_skips

if TYPE_CHECKING:
    from src.infra.cancellation import CancellationToken

logger = structlog.get_logger()

RECENCY_THRESHOLD_S = 24 * 60 * 60


def sort_file_entries(
    entries: list[tuple[Path, float]], *, now: float, recency_threshold_s: float
) -> list[Path]:
    """Recently modified files first (newest first), then the rest alphabetically."""

    def key(entry: tuple[Path, float]) -> tuple:
        path, mtime = entry
        if now - mtime < recency_threshold_s:
            return (0, -mtime, path.as_posix())
        return (1, 0.0, path.as_posix())

    return [path for path, _ in sorted(entries, key=key)]


def _collect(root: Path, pattern: str, case_sensitive: bool) -> list[tuple[Path, float]]:
    found: list[tuple[Path, float]] = []
    for path in root.glob(pattern, case_sensitive=case_sensitive):
        try:
            if not path.is_file():
                continue
            found.append((path, path.stat().st_mtime))
        except OSError:
            continue
    return found


class GlobInvocation(ToolInvocation):
    def get_description(self) -> str:
        pattern = self.params["pattern"]
        path = self.params.get("path")
        return f"'{pattern}'" + (f" within {path}" if path else "")

    async def execute(self, token: CancellationToken) -> ToolResult:
        ctx = self.context
        pattern: str = self.params["pattern"]
        case_sensitive: bool = self.params.get("case_sensitive", False)
        respect_git_ignore: bool = self.params.get(
            "respect_git_ignore", ctx.file_filtering.respect_git_ignore
        )

        if self.params.get("path"):
            search_dir = ctx.workspace.require_within(
                ctx.resolve_path(self.params["path"]), tool_name="glob"
            )
            if not search_dir.is_dir():
                return ToolResult.failure(
                    "NOT_A_DIRECTORY", f"Path is not a directory: {ctx.display_path(search_dir)}"
                )
            roots = [search_dir]
        else:
            roots = list(ctx.workspace.directories)

        if token.is_cancelled:
            return ToolResult.cancelled()
        batches = await asyncio.gather(
            *(asyncio.to_thread(_collect, root, pattern, case_sensitive) for root in roots)
        )
        if token.is_cancelled:
            return ToolResult.cancelled()

        budget = ctx.new_budget()
        merged: dict[Path, float] = {}
        escaped = 0
        git_ignored = 0
        tool_ignored = 0
        for batch in batches:
            for path, mtime in batch:
                resolved = path.resolve()
                if not ctx.workspace.is_within(resolved):
                    escaped += 1
                    budget.record_skip(
                        path.as_posix(),
                        f"Security: path resolves outside the workspace: {resolved.as_posix()}",
                    )
                    continue
                if respect_git_ignore and ctx.file_service.is_git_ignored(resolved):
                    git_ignored += 1
                    continue
                if ctx.file_service.is_tool_ignored(resolved):
                    tool_ignored += 1
                    continue
                merged[resolved] = mtime
        if escaped:
            logger.warning("workspace_escape_blocked", tool_name="glob", count=escaped)
        if git_ignored:
            budget.record_skip(f"{git_ignored} file(s)", "git ignored", count=git_ignored)
        if tool_ignored:
            budget.record_skip(
                f"{tool_ignored} file(s)",
                f"ignored by {ctx.file_service.tool_ignore_filename}",
                count=tool_ignored,
            )

        where = ", ".join(root.as_posix() for root in roots)
        if not merged:
            message = f'No files found matching pattern "{pattern}" within {where}'
            if git_ignored:
                message += f" ({git_ignored} files were git-ignored)"
            return ToolResult(
                machine_content=message,
                human_summary=summary_with_skips("No files found", budget),
            )

        ordered = sort_file_entries(
            list(merged.items()), now=time.time(), recency_threshold_s=RECENCY_THRESHOLD_S
        )
        admitted = budget.admit(ordered, unit="file")
        if budget.count_overflowed:
            message = overflow_message(len(ordered), budget.max_items)
            return ToolResult(machine_content=message, human_summary=message)

        header = (
            f'Found {len(ordered)} file(s) matching "{pattern}" within {where}'
            + (f" ({git_ignored} additional files were git-ignored)" if git_ignored else "")
            + ", sorted by modification time (newest first)"
        )
        if len(admitted) < len(ordered):
            header += f"; showing {len(admitted)}"
        content = header + ":\n" + "\n".join(p.as_posix() for p in admitted)
        return ToolResult(
            machine_content=content,
            human_summary=summary_with_skips(f"Found {len(ordered)} matching file(s)", budget),
        )


class GlobTool(DeclarativeTool):
    """Find files by glob pattern, most recently modified first."""

    @property
    def name(self) -> str:
        return "glob"

    @property
    def display_name(self) -> str:
        return "FindFiles"

    @property
    def description(self) -> str:
        return (
            "Efficiently finds files matching a glob pattern (e.g. 'src/**/*.py', '*.md'), "
            "returning absolute paths. Files modified in the last 24 hours come first "
            "(newest first), followed by the rest in alphabetical order."
        )

    @property
    def risk_level(self) -> RiskLevel:
        return RiskLevel.low

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "pattern": {
                    "type": "string",
                    "minLength": 1,
                    "description": "Glob pattern relative to the search directory, e.g. '**/*.py'.",
                },
                "path": {
                    "type": "string",
                    "description": (
                        "Directory to search within. Defaults to every workspace directory."
                    ),
                },
                "case_sensitive": {
                    "type": "boolean",
                    "description": "Whether matching is case-sensitive. Defaults to false.",
                },
                "respect_git_ignore": {
                    "type": "boolean",
                    "description": "Whether to skip files ignored by .gitignore.",
                },
            },
            "required": ["pattern"],
        }

    def validate_params(self, params: dict) -> list[str]:
        pattern = params["pattern"]
        if not pattern.strip():
            return ["pattern: must not be blank"]
        if pattern.startswith("/") or Path(pattern).is_absolute():
            return ["pattern: must be relative; use 'path' to choose the directory"]
        return []

    def create_invocation(self, params: dict) -> GlobInvocation:
        return GlobInvocation(self, params, self.context)
