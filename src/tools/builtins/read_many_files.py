from __future__ import annotations

import asyncio
import glob
import os
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from src.constants import DEFAULT_EXCLUDES
from src.tools.base import DeclarativeTool, Part, RiskLevel, ToolInvocation, ToolResult
from src.tools.file_utils import DEFAULT_ENCODING, detect_file_type, process_single_file_content
from src.tools.output_budget import Accepted, BudgetReport, overflow_message
from src.workspace.ignore import IgnoreRuleSet, IgnoreSource

if TYPE_CHECKING:
    from src.infra.cancellation import CancellationToken
    from src.tools.context import ToolContext
    from src.tools.output_budget import OutputBudget

logger = structlog.get_logger()

SEPARATOR_FORMAT = "--- {path} ---"
TRUNCATED_FILE_WARNING = (
    "[WARNING: This file was truncated. To view the full content, "
    "use the 'read_file' tool on this specific file.]\n\n"
)
NO_FILES_CONTENT = "No files matching the criteria were found or all were skipped."
_MAX_LISTED_PROCESSED = 10
_MAX_LISTED_SKIPPED = 5


def _has_magic(pattern: str) -> bool:
    return any(c in pattern for c in "*?[")


def expand_patterns(root: Path, patterns: list[str], *, recursive: bool) -> list[Path]:
    """Expand glob patterns below root into file paths (not canonicalized).

    A plain directory path expands to its contents. Absolute patterns are
    expanded as given; the caller checks the boundary afterwards.
    """
    found: list[Path] = []
    for raw in patterns:
        pattern = raw.replace("\\", "/")
        base = Path(pattern) if os.path.isabs(pattern) else root / pattern
        if not _has_magic(pattern) and base.is_dir():
            pattern = pattern.rstrip("/") + ("/**/*" if recursive else "/*")
        for match in glob.glob(pattern, root_dir=root, recursive=True, include_hidden=True):
            path = Path(match)
            if not path.is_absolute():
                path = root / path
            if path.is_file():
                found.append(path)
    return found


def _explicitly_requested(path: Path, patterns: list[str]) -> bool:
    suffix = path.suffix.lower()
    stem = path.stem
    return any(
        (suffix and suffix in pattern.lower()) or stem in pattern for pattern in patterns
    )


class ReadManyFilesInvocation(ToolInvocation):
    def __init__(self, tool: DeclarativeTool, params: dict, context: ToolContext) -> None:
        super().__init__(tool, params, context)
        filtering = params.get("file_filtering_options") or {}
        self._respect_git_ignore: bool = filtering.get(
            "respect_git_ignore", context.file_filtering.respect_git_ignore
        )
        self._respect_tool_ignore: bool = filtering.get(
            "respect_tool_ignore", context.file_filtering.respect_tool_ignore
        )
        self._search_patterns: list[str] = [*params["paths"], *params.get("include", [])]
        self._excludes = IgnoreRuleSet()
        if params.get("useDefaultExcludes", True):
            self._excludes.add_source(
                IgnoreSource.builtin,
                [*DEFAULT_EXCLUDES, *(f"**/{name}" for name in context.context_filenames)],
                origin="default excludes",
            )
        self._excludes.add_source(
            IgnoreSource.custom, params.get("exclude", []), origin="exclude parameter"
        )

    def exclusion_patterns(self) -> list[str]:
        """Every exclusion execute() applies, in order."""
        patterns = self._excludes.patterns()
        if self._respect_git_ignore:
            patterns += self.context.file_service.rules.patterns(IgnoreSource.vcs)
        if self._respect_tool_ignore:
            patterns += self.context.file_service.tool_ignore_patterns()
        return patterns

    def get_description(self) -> str:
        ctx = self.context
        patterns = "`, `".join(self._search_patterns)
        excludes = self.exclusion_patterns()
        exclude_desc = (
            f"Excluding {len(excludes)} pattern(s): `" + "`, `".join(excludes) + "`"
            if excludes
            else "Excluding: none specified"
        )
        separator = SEPARATOR_FORMAT.format(path="path/to/file.ext")
        return (
            f"Will attempt to read and concatenate files using patterns: `{patterns}` "
            f"(within target directory: `{ctx.target_dir.as_posix()}`). {exclude_desc}. "
            f'File encoding: {DEFAULT_ENCODING}. Separator: "{separator}".'
        )

    async def _discover(self) -> list[Path]:
        """Fan out per workspace root, then merge in a single writer."""
        roots = self.context.workspace.directories
        recursive = self.params.get("recursive", True)
        batches = await asyncio.gather(
            *(
                asyncio.to_thread(expand_patterns, root, self._search_patterns, recursive=recursive)
                for root in roots
            )
        )
        merged: dict[Path, None] = {}
        for root, batch in zip(roots, batches, strict=True):
            for path in batch:
                resolved = path.resolve()
                # Both the path as globbed and its canonical location must pass
                if self._excluded(path, root) or self._excluded(
                    resolved, self.context.workspace.root_for(resolved)
                ):
                    continue
                merged[resolved] = None
        return list(merged)

    def _excluded(self, path: Path, root: Path | None) -> bool:
        if root is None or not path.is_relative_to(root):
            return False
        return self._excludes.matches(path.relative_to(root).as_posix())

    def _filter(self, entries: list[Path], budget: OutputBudget) -> list[Path]:
        ctx = self.context
        service = ctx.file_service
        git_ignored = 0
        tool_ignored = 0
        kept: list[Path] = []
        for path in entries:
            # Checked after resolution: globs may expand to absolute or symlinked paths
            if not ctx.workspace.is_within(path):
                logger.warning(
                    "workspace_escape_blocked", path=str(path), tool_name="read_many_files"
                )
                budget.record_skip(
                    path.as_posix(),
                    f"Security: glob returned a path outside the workspace: {path.as_posix()}",
                )
                continue
            if self._respect_git_ignore and service.is_git_ignored(path):
                git_ignored += 1
                continue
            if self._respect_tool_ignore and service.is_tool_ignored(path):
                tool_ignored += 1
                continue
            kept.append(path)

        if git_ignored:
            budget.record_skip(f"{git_ignored} file(s)", "git ignored", count=git_ignored)
        if tool_ignored:
            budget.record_skip(
                f"{tool_ignored} file(s)",
                f"ignored by {service.tool_ignore_filename}",
                count=tool_ignored,
            )
        return sorted(kept, key=lambda p: p.as_posix())

    async def execute(self, token: CancellationToken) -> ToolResult:
        ctx = self.context
        if token.is_cancelled:
            return ToolResult.cancelled()

        budget = ctx.new_budget()
        entries = await self._discover()
        if token.is_cancelled:
            return ToolResult.cancelled()

        candidates = self._filter(entries, budget)
        admitted = budget.admit(candidates, unit="file")
        if budget.count_overflowed:
            message = overflow_message(len(candidates), budget.max_items)
            return ToolResult(
                machine_content=message,
                human_summary=(
                    f"## File Count Limit Exceeded\n\n{message}\n\n"
                    f"**Matched files:** {len(candidates)}\n**Limit:** {budget.max_items}\n\n"
                    "**Suggestion:** Use more specific glob patterns or paths to reduce "
                    "the number of matched files."
                ),
            )

        parts: list[Part] = []
        for index, path in enumerate(admitted):
            if token.is_cancelled:
                logger.info("tool_cancelled", tool_name="read_many_files", read=len(parts))
                return ToolResult.cancelled()
            display = ctx.display_path(path)
            remaining = len(admitted) - index

            try:
                size = path.stat().st_size
            except OSError as e:
                budget.record_skip(display, f"stat error: {e}")
                continue
            if not budget.check_size(display, size):
                continue

            file_type = detect_file_type(path)
            if file_type in ("image", "pdf") and not _explicitly_requested(
                path, self.params["paths"]
            ):
                budget.record_skip(
                    display,
                    "asset file (image/pdf) was not explicitly requested by name or extension",
                )
                continue

            result = await asyncio.to_thread(process_single_file_content, path)
            if result.error:
                budget.record_skip(display, f"Read error: {result.error}")
                continue

            if not result.is_text:
                decision = budget.try_accept_opaque(display)
                if isinstance(decision, Accepted):
                    parts.append(result.content)
                continue

            body = (TRUNCATED_FILE_WARNING if result.is_truncated else "") + result.content
            separator = SEPARATOR_FORMAT.format(path=path.as_posix())
            decision = budget.try_accept(display, f"{separator}\n\n{body}\n\n", remaining=remaining)
            if isinstance(decision, Accepted):
                parts.append(decision.content)
            elif decision.stop:
                break

        report = budget.finalize()
        logger.info(
            "read_many_files_done",
            read=len(report.accepted),
            skipped=report.skipped_count,
            tokens=report.tokens,
        )
        return ToolResult(
            machine_content=parts or [NO_FILES_CONTENT],
            human_summary=self._summary(report),
        )

    def _summary(self, report: BudgetReport) -> str:
        target = self.context.target_dir.as_posix()
        lines = [f"### ReadManyFiles Result (Target Dir: `{target}`)", ""]
        processed = report.accepted
        if processed:
            line = f"Successfully read and concatenated content from **{len(processed)} file(s)**"
            if report.tokens:
                line += f" (approximately {report.tokens:,} tokens)"
            lines.append(line + ".")
            if len(processed) <= _MAX_LISTED_PROCESSED:
                lines.append("")
                lines.append("**Processed Files:**")
                lines.extend(f"- `{p}`" for p in processed)
            else:
                lines.append("")
                lines.append(f"**Processed Files (first {_MAX_LISTED_PROCESSED} shown):**")
                lines.extend(f"- `{p}`" for p in processed[:_MAX_LISTED_PROCESSED])
                lines.append(f"- ...and {len(processed) - _MAX_LISTED_PROCESSED} more.")

        skipped = report.skipped
        if not processed:
            lines.append("No files were read and concatenated based on the criteria.")
        if skipped:
            header = f"**Skipped {len(skipped)} item(s)"
            if len(skipped) > _MAX_LISTED_SKIPPED:
                header += f" (first {_MAX_LISTED_SKIPPED} shown)"
            lines.append("")
            lines.append(header + ":**")
            lines.extend(
                f"- `{record.path}` (Reason: {record.reason})"
                for record in skipped[:_MAX_LISTED_SKIPPED]
            )
            if len(skipped) > _MAX_LISTED_SKIPPED:
                lines.append(f"- ...and {len(skipped) - _MAX_LISTED_SKIPPED} more.")
        return "\n".join(lines).strip()


class ReadManyFilesTool(DeclarativeTool):
    """Read and concatenate many files selected by paths or glob patterns."""

    @property
    def name(self) -> str:
        return "read_many_files"

    @property
    def display_name(self) -> str:
        return "ReadManyFiles"

    @property
    def description(self) -> str:
        out = self.context.output
        return (
            "Reads content from multiple files specified by paths or glob patterns within "
            "the workspace and concatenates text files using a '--- {filePath} ---' "
            "separator. Images and PDFs are included only when their name or extension is "
            "explicitly requested. Default excludes cover dependency directories, build "
            "output and binary files unless 'useDefaultExcludes' is false.\n\n"
            "LIMITS:\n"
            f"- Maximum files: {out.max_items} (setting 'tool-output-max-items')\n"
            f"- Maximum tokens: {out.max_tokens:,} (setting 'tool-output-max-tokens')\n"
            f"- Maximum file size: {out.item_size_limit // 1024}KB per file "
            "(setting 'tool-output-item-size-limit')\n"
            f"- On overflow: '{out.truncate_mode}' (setting 'tool-output-truncate-mode')"
        )

    @property
    def risk_level(self) -> RiskLevel:
        return RiskLevel.low

    @property
    def parameters(self) -> dict:
        string_list = {"type": "array", "items": {"type": "string", "minLength": 1}}
        return {
            "type": "object",
            "properties": {
                "paths": {
                    **string_list,
                    "minItems": 1,
                    "description": (
                        "Glob patterns or paths relative to the target directory, "
                        "e.g. ['src/**/*.py'], ['README.md', 'docs/']."
                    ),
                },
                "include": {
                    **string_list,
                    "description": "Additional glob patterns merged with `paths`.",
                },
                "exclude": {
                    **string_list,
                    "description": "Glob patterns for files/directories to exclude.",
                },
                "recursive": {
                    "type": "boolean",
                    "description": "Expand plain directory paths recursively. Defaults to true.",
                },
                "useDefaultExcludes": {
                    "type": "boolean",
                    "description": "Apply the default exclusion patterns. Defaults to true.",
                },
                "file_filtering_options": {
                    "type": "object",
                    "properties": {
                        "respect_git_ignore": {"type": "boolean"},
                        "respect_tool_ignore": {"type": "boolean"},
                    },
                    "additionalProperties": False,
                    "description": "Whether to respect .gitignore / tool ignore patterns.",
                },
            },
            "required": ["paths"],
        }

    def validate_params(self, params: dict) -> list[str]:
        blank = [p for p in params["paths"] if not p.strip()]
        if blank:
            return ["paths: entries must not be blank"]
        return []

    def create_invocation(self, params: dict) -> ReadManyFilesInvocation:
        return ReadManyFilesInvocation(self, params, self.context)
