"""Expansion of `@path` import directives in context files.

A directive is an `@` followed by a relative or absolute file path (with an
extension), at the start of a line or after whitespace. Directives inside
fenced code blocks or inline code spans are left alone.

Two output formats:
- tree: the imported content is wrapped in `<!-- Imported from: p -->` /
  `<!-- End of import from: p -->` comments at the directive's position;
- flat: the imported content replaces the directive; a file already
  included earlier in the same document is not included again.

Expansion never fails: cycles, depth overflow, read errors and paths
outside the allowed roots become diagnostics plus an inline comment.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from src.workspace.boundary import canonicalize

if TYPE_CHECKING:
    from src.workspace.boundary import WorkspaceBoundary

logger = structlog.get_logger()

IMPORT_PATTERN = re.compile(r"(?<![\w@])@((?:\.{1,2}/|/)?[^\s`'\"<>()\[\]@]+\.[A-Za-z0-9]+)")
_FENCE_PATTERN = re.compile(r"^(```|~~~)[^\n]*\n.*?^\1[ \t]*$", re.MULTILINE | re.DOTALL)
_INLINE_CODE_PATTERN = re.compile(r"`[^`\n]+`")


def _code_regions(content: str) -> list[tuple[int, int]]:
    regions = [m.span() for m in _FENCE_PATTERN.finditer(content)]
    for m in _INLINE_CODE_PATTERN.finditer(content):
        start, end = m.span()
        if not any(s <= start < e for s, e in regions):
            regions.append((start, end))
    return regions


def find_imports(content: str) -> list[re.Match[str]]:
    """Import directives outside code, in document order."""
    regions = _code_regions(content)
    return [
        m
        for m in IMPORT_PATTERN.finditer(content)
        if not any(s <= m.start() < e for s, e in regions)
    ]


@dataclass
class ImportResult:
    content: str
    import_depth: int = 0
    imported: list[Path] = field(default_factory=list)
    diagnostics: list[str] = field(default_factory=list)


@dataclass
class _ExpansionState:
    source: Path
    import_depth: int = 0
    imported: list[Path] = field(default_factory=list)
    included: set[Path] = field(default_factory=set)
    diagnostics: list[str] = field(default_factory=list)


class ImportProcessor:
    """Recursively expands imports relative to each importing file's directory."""

    def __init__(
        self,
        *,
        allowed: WorkspaceBoundary,
        import_format: str = "tree",
        max_depth: int = 5,
    ) -> None:
        self._allowed = allowed
        self._format = import_format
        self._max_depth = max_depth

    def process(self, content: str, source: Path) -> ImportResult:
        """Expand every import reachable from source's content. Synchronous."""
        source = canonicalize(source)
        state = _ExpansionState(source=source, included={source})
        expanded = self._expand(content, source, frozenset({source}), 0, state)
        return ImportResult(
            content=expanded,
            import_depth=state.import_depth,
            imported=state.imported,
            diagnostics=state.diagnostics,
        )

    def _skip(self, state: _ExpansionState, raw: str, reason: str) -> str:
        state.diagnostics.append(f"{state.source}: import '{raw}' skipped: {reason}")
        return f"<!-- Import failed: {raw} - {reason} -->"

    def _expand(
        self,
        content: str,
        file: Path,
        chain: frozenset[Path],
        depth: int,
        state: _ExpansionState,
    ) -> str:
        matches = find_imports(content)
        if not matches:
            return content

        pieces: list[str] = []
        cursor = 0
        for match in matches:
            pieces.append(content[cursor:match.start()])
            cursor = match.end()
            pieces.append(self._import_one(match.group(1), file, chain, depth, state))
        pieces.append(content[cursor:])
        return "".join(pieces)

    def _import_one(
        self,
        raw: str,
        file: Path,
        chain: frozenset[Path],
        depth: int,
        state: _ExpansionState,
    ) -> str:
        target = canonicalize(raw, base=file.parent)

        if not self._allowed.is_within(target):
            return self._skip(state, raw, "path is outside the allowed directories")
        if target in chain:
            logger.warning("context_import_cycle", source=str(file), target=str(target))
            return self._skip(state, raw, "circular import detected")
        if depth + 1 > self._max_depth:
            logger.warning(
                "context_import_depth_exceeded",
                source=str(file),
                target=str(target),
                max_depth=self._max_depth,
            )
            return self._skip(state, raw, f"maximum import depth ({self._max_depth}) exceeded")
        if self._format == "flat" and target in state.included:
            return ""

        try:
            imported = target.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("context_file_read_failed", path=str(target), error=str(e))
            return self._skip(state, raw, f"could not read file ({e.__class__.__name__})")

        state.import_depth = max(state.import_depth, depth + 1)
        state.imported.append(target)
        state.included.add(target)
        # The chain is per path: sibling imports of the same file are not cycles
        body = self._expand(imported, target, chain | {target}, depth + 1, state)
        if self._format == "flat":
            return body
        return f"<!-- Imported from: {raw} -->\n{body}\n<!-- End of import from: {raw} -->"
