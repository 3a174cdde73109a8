from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from src.tools.base import DeclarativeTool, RiskLevel, ToolInvocation, ToolResult
from src.tools.file_utils import DEFAULT_ENCODING, detect_file_type
from src.tools.output_budget import Accepted, overflow_message, summary_with_skips

if TYPE_CHECKING:
    from src.infra.cancellation import CancellationToken
    from src.tools.output_budget import OutputBudget

logger = structlog.get_logger()

# Never searched, regardless of ignore files
SEARCH_SKIP_DIRS = frozenset({".git", ".svn", ".hg", "node_modules", "bower_components"})


@dataclass(frozen=True)
class GrepMatch:
    path: Path
    line_number: int
    line: str


@dataclass
class ScanTally:
    matches: list[GrepMatch] = field(default_factory=list)
    git_ignored: int = 0
    tool_ignored: int = 0


def _candidate_files(root: Path, include: str | None) -> list[Path]:
    pattern = include or "**/*"
    files = [
        p
        for p in root.glob(pattern)
        if not SEARCH_SKIP_DIRS.intersection(p.relative_to(root).parts) and p.is_file()
    ]
    return sorted(files, key=lambda p: p.as_posix())


def _search_file(path: Path, regex: re.Pattern[str]) -> list[GrepMatch]:
    matches: list[GrepMatch] = []
    with path.open(encoding=DEFAULT_ENCODING, errors="replace") as f:
        for number, line in enumerate(f, start=1):
            line = line.rstrip("\r\n")
            if regex.search(line):
                matches.append(GrepMatch(path=path, line_number=number, line=line))
    return matches


class GrepInvocation(ToolInvocation):
    def get_description(self) -> str:
        desc = f"'{self.params['pattern']}'"
        if self.params.get("path"):
            desc += f" within {self.params['path']}"
        if self.params.get("include"):
            desc += f" in {self.params['include']}"
        return desc

    async def _scan(
        self,
        files: list[Path],
        regex: re.Pattern[str],
        budget: OutputBudget,
        token: CancellationToken,
        tally: ScanTally,
    ) -> bool:
        """Search files in order; False if cancelled part way."""
        ctx = self.context
        service = ctx.file_service
        for path in files:
            if token.is_cancelled:
                return False
            resolved = path.resolve()
            if not ctx.workspace.is_within(resolved):
                logger.warning(
                    "workspace_escape_blocked",
                    path=str(path),
                    resolved=str(resolved),
                    tool_name="search_file_content",
                )
                budget.record_skip(
                    path.as_posix(),
                    f"Security: path resolves outside the workspace: {resolved.as_posix()}",
                )
                continue
            if ctx.file_filtering.respect_git_ignore and service.is_git_ignored(resolved):
                tally.git_ignored += 1
                continue
            if ctx.file_filtering.respect_tool_ignore and service.is_tool_ignored(resolved):
                tally.tool_ignored += 1
                continue
            try:
                size = resolved.stat().st_size
            except OSError as e:
                budget.record_skip(ctx.display_path(resolved), f"stat error: {e}")
                continue
            if not budget.check_size(ctx.display_path(resolved), size):
                continue
            if detect_file_type(resolved) != "text":
                continue
            try:
                tally.matches.extend(await asyncio.to_thread(_search_file, resolved, regex))
            except OSError as e:
                budget.record_skip(ctx.display_path(resolved), f"Read error: {e}")
        return True

    async def execute(self, token: CancellationToken) -> ToolResult:
        ctx = self.context
        pattern: str = self.params["pattern"]
        include: str | None = self.params.get("include")
        regex = re.compile(pattern, re.IGNORECASE)

        if self.params.get("path"):
            search_dir = ctx.workspace.require_within(
                ctx.resolve_path(self.params["path"]), tool_name="search_file_content"
            )
            if not search_dir.is_dir():
                return ToolResult.failure(
                    "NOT_A_DIRECTORY", f"Path is not a directory: {ctx.display_path(search_dir)}"
                )
            roots = [search_dir]
        else:
            roots = list(ctx.workspace.directories)

        budget = ctx.new_budget()
        tally = ScanTally()
        for root in roots:
            if token.is_cancelled:
                return ToolResult.cancelled()
            files = await asyncio.to_thread(_candidate_files, root, include)
            if not await self._scan(files, regex, budget, token, tally):
                return ToolResult.cancelled()
        if tally.git_ignored:
            budget.record_skip(
                f"{tally.git_ignored} file(s)", "git ignored", count=tally.git_ignored
            )
        if tally.tool_ignored:
            budget.record_skip(
                f"{tally.tool_ignored} file(s)",
                f"ignored by {ctx.file_service.tool_ignore_filename}",
                count=tally.tool_ignored,
            )

        matches = tally.matches
        where = ", ".join(f'"{ctx.display_path(root)}"' for root in roots)
        filter_desc = f' (filter: "{include}")' if include else ""
        if not matches:
            message = f'No matches found for pattern "{pattern}" in path {where}{filter_desc}.'
            return ToolResult(
                machine_content=message,
                human_summary=summary_with_skips("No matches found", budget),
            )

        admitted = budget.admit(matches, unit="match")
        if budget.count_overflowed:
            message = overflow_message(len(matches), budget.max_items, unit="match")
            return ToolResult(machine_content=message, human_summary=message)

        blocks: dict[str, list[str]] = {}
        remaining = len(admitted)
        for match in admitted:
            display = ctx.display_path(match.path)
            decision = budget.try_accept(
                f"{display}:{match.line_number}",
                f"L{match.line_number}: {match.line.strip()}",
                remaining=remaining,
            )
            remaining -= 1
            if isinstance(decision, Accepted):
                blocks.setdefault(display, []).append(decision.content)
            elif decision.stop:
                break

        shown = len(budget.finalize().accepted)
        header = (
            f"Found {len(matches)} match(es) for pattern \"{pattern}\" in path {where}{filter_desc}"
        )
        if shown < len(matches):
            header += f"; showing {shown}"
        lines = [header + ":", "---"]
        for display, file_lines in blocks.items():
            lines.append(f"File: {display}")
            lines.extend(file_lines)
            lines.append("---")

        logger.info("search_file_content_done", matches=len(matches), shown=shown)
        return ToolResult(
            machine_content="\n".join(lines),
            human_summary=summary_with_skips(f"Found {len(matches)} match(es)", budget),
        )


class GrepTool(DeclarativeTool):
    """Regex search across text files in the workspace."""

    @property
    def name(self) -> str:
        return "search_file_content"

    @property
    def display_name(self) -> str:
        return "SearchText"

    @property
    def description(self) -> str:
        return (
            "Searches for a regular expression (case-insensitive) within the content of "
            "files in a directory, optionally filtered by a glob pattern. Returns matching "
            "lines grouped by file, with line numbers."
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
                    "description": r"Regular expression to search for, e.g. 'def\s+main'.",
                },
                "path": {
                    "type": "string",
                    "description": (
                        "Directory to search within. Defaults to every workspace directory."
                    ),
                },
                "include": {
                    "type": "string",
                    "description": "Glob pattern selecting files to search, e.g. '**/*.py'.",
                },
            },
            "required": ["pattern"],
        }

    def validate_params(self, params: dict) -> list[str]:
        try:
            re.compile(params["pattern"])
        except re.error as e:
            return [f"pattern: invalid regular expression: {e}"]
        include = params.get("include")
        if include is not None and (not include.strip() or Path(include).is_absolute()):
            return ["include: must be a non-empty relative glob pattern"]
        return []

    def create_invocation(self, params: dict) -> GrepInvocation:
        return GrepInvocation(self, params, self.context)
