"""Path-exclusion rules compiled from gitignore-style pattern sources.

Semantics:
- Patterns use shell-glob syntax; ``**`` spans zero or more path segments.
- A pattern without an inner ``/`` matches at any depth; one with an inner
  or leading ``/`` is anchored at the rule set's base directory.
- A trailing ``/`` restricts the pattern to directories.
- Within one source the last matching pattern wins, so ``!pattern`` can
  re-include a path that an earlier pattern of the *same* source excluded.
- Across sources the result is a union: a path excluded by any source is
  excluded, and no source can re-include what another source excluded.
- A path inside an excluded directory is excluded.

Matching is pure: the rule set does no I/O after patterns are added.
"""

from __future__ import annotations

import posixpath
import re
from collections.abc import Collection, Iterable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path, PurePath

import structlog

logger = structlog.get_logger()


class IgnoreSource(StrEnum):
    builtin = "builtin"
    vcs = "vcs"
    custom = "custom"


class IgnorePatternError(ValueError):
    """A pattern line that cannot be compiled."""


@dataclass(frozen=True)
class IgnorePattern:
    raw: str
    regex: re.Pattern[str]
    negated: bool = False
    dir_only: bool = False

    def matches(self, rel_path: str, is_dir: bool) -> bool:
        if self.dir_only and not is_dir:
            return False
        if self.regex.match(rel_path):
            return True
        # "dir/**" style patterns cover the directory itself for pruning
        return is_dir and self.regex.match(rel_path + "/") is not None


@dataclass(frozen=True)
class IgnoreRuleGroup:
    """Compiled patterns contributed by one source, in file order."""

    source: IgnoreSource
    patterns: tuple[IgnorePattern, ...]
    origin: str = ""

    def decide(self, rel_path: str, is_dir: bool) -> bool | None:
        """Last match wins. True = excluded, False = re-included, None = no match."""
        for pattern in reversed(self.patterns):
            if pattern.matches(rel_path, is_dir):
                return not pattern.negated
        return None

    def excludes(self, parts: list[str], is_dir: bool) -> bool:
        for i in range(1, len(parts)):
            if self.decide("/".join(parts[:i]), True) is True:
                return True
        return self.decide("/".join(parts), is_dir) is True


def _translate(glob: str) -> str:
    """Translate one glob (no leading/trailing slash) into a regex body."""
    out: list[str] = []
    i, n = 0, len(glob)
    while i < n:
        c = glob[i]
        if c == "*":
            j = i
            while j < n and glob[j] == "*":
                j += 1
            if j - i >= 2:
                at_segment_start = i == 0 or glob[i - 1] == "/"
                if at_segment_start and j < n and glob[j] == "/":
                    out.append("(?:.*/)?")
                    i = j + 1
                    continue
                if at_segment_start and j == n:
                    out.append(".*")
                    i = j
                    continue
            out.append("[^/]*")
            i = j
            continue
        if c == "?":
            out.append("[^/]")
        elif c == "[":
            j = i + 1
            if j < n and glob[j] in "!^":
                j += 1
            if j < n and glob[j] == "]":
                j += 1
            while j < n and glob[j] != "]":
                j += 1
            if j >= n:
                raise IgnorePatternError(f"unterminated character class in '{glob}'")
            body = glob[i + 1 : j].replace("\\", "\\\\").replace("[", "\\[")
            if body[:1] in ("!", "^"):
                body = "^" + body[1:]
            out.append(f"[{body}]")
            i = j + 1
            continue
        elif c == "\\":
            if i + 1 >= n:
                raise IgnorePatternError(f"trailing backslash in '{glob}'")
            out.append(re.escape(glob[i + 1]))
            i += 2
            continue
        else:
            out.append(re.escape(c))
        i += 1
    return "".join(out)


def compile_pattern(raw: str) -> IgnorePattern | None:
    """Compile one ignore-file line. Returns None for blank lines and comments.

    Raises IgnorePatternError for lines that cannot be compiled.
    """
    line = raw.rstrip("\r\n")
    if line.endswith(" ") and not line.endswith("\\ "):
        line = line.rstrip(" ")
    if not line or line.startswith("#"):
        return None

    negated = False
    if line.startswith("!"):
        negated = True
        line = line[1:]
    elif line.startswith(("\\!", "\\#")):
        line = line[1:]

    dir_only = line.endswith("/")
    line = line.rstrip("/")
    anchored = "/" in line
    line = line.lstrip("/")
    if not line:
        raise IgnorePatternError(f"empty pattern '{raw.strip()}'")

    prefix = "" if anchored else "(?:.*/)?"
    try:
        regex = re.compile(f"^{prefix}{_translate(line)}$", re.DOTALL)
    except re.error as e:
        raise IgnorePatternError(f"invalid pattern '{raw.strip()}': {e}") from e
    return IgnorePattern(raw=raw.strip(), regex=regex, negated=negated, dir_only=dir_only)


def normalize_relative(path: str | PurePath) -> tuple[list[str], bool] | None:
    """Split a relative path into segments. None when it is empty or leaves the base."""
    text = str(path).replace("\\", "/")
    trailing_slash = text.endswith("/")
    text = posixpath.normpath(text.lstrip("/")) if text.strip("/") else ""
    if not text or text == "." or text == ".." or text.startswith("../"):
        return None
    return text.split("/"), trailing_slash


class IgnoreRuleSet:
    """Ordered union of ignore sources.

    Build it fully (add_source / add_file) before sharing it; after that it
    is read-only and safe to use from concurrent invocations.
    """

    def __init__(self) -> None:
        self._groups: list[IgnoreRuleGroup] = []
        self._warnings: list[str] = []

    @property
    def warnings(self) -> list[str]:
        """Malformed patterns that were skipped, as 'origin: pattern: reason'."""
        return list(self._warnings)

    @property
    def sources(self) -> list[IgnoreSource]:
        return [group.source for group in self._groups]

    def patterns(self, source: IgnoreSource | None = None) -> list[str]:
        """Raw pattern text in effect, optionally for one source."""
        return [
            pattern.raw
            for group in self._groups
            if source is None or group.source == source
            for pattern in group.patterns
        ]

    def add_source(
        self, source: IgnoreSource, patterns: Iterable[str], *, origin: str = ""
    ) -> int:
        """Compile and append a source. Malformed patterns are skipped with a warning.

        Returns the number of patterns compiled.
        """
        compiled: list[IgnorePattern] = []
        for raw in patterns:
            try:
                pattern = compile_pattern(raw)
            except IgnorePatternError as e:
                self._warnings.append(f"{origin or source}: {raw.strip()}: {e}")
                logger.warning(
                    "ignore_pattern_skipped",
                    source=str(source),
                    origin=origin,
                    pattern=raw.strip(),
                    reason=str(e),
                )
                continue
            if pattern is not None:
                compiled.append(pattern)
        if compiled:
            self._groups.append(
                IgnoreRuleGroup(source=source, patterns=tuple(compiled), origin=origin)
            )
        return len(compiled)

    def add_file(self, source: IgnoreSource, path: Path) -> int:
        """Add patterns from an ignore file. A missing file contributes nothing."""
        if not path.is_file():
            return 0
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except (OSError, UnicodeDecodeError) as e:
            self._warnings.append(f"{path}: unreadable: {e}")
            logger.warning("ignore_file_unreadable", path=str(path), error=str(e))
            return 0
        return self.add_source(source, lines, origin=str(path))

    def matches(
        self,
        relative_path: str | PurePath,
        *,
        is_dir: bool = False,
        sources: Collection[IgnoreSource] | None = None,
    ) -> bool:
        """True if any (selected) source excludes the path.

        relative_path is relative to the directory the patterns are anchored
        at; paths that leave it are never matched.
        """
        normalized = normalize_relative(relative_path)
        if normalized is None:
            return False
        parts, trailing_slash = normalized
        is_dir = is_dir or trailing_slash
        return any(
            group.excludes(parts, is_dir)
            for group in self._groups
            if sources is None or group.source in sources
        )

    def filter(
        self,
        relative_paths: Iterable[str],
        *,
        sources: Collection[IgnoreSource] | None = None,
    ) -> list[str]:
        """Return the paths that are not excluded, preserving order."""
        return [p for p in relative_paths if not self.matches(p, sources=sources)]

    def __len__(self) -> int:
        return sum(len(group.patterns) for group in self._groups)
