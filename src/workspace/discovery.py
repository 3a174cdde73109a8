from __future__ import annotations

import os
from collections import deque
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from src.constants import (
    DEFAULT_TOOL_IGNORE_FILENAME,
    GIT_IGNORE_FILENAME,
    VCS_ROOT_MARKER,
)
from src.workspace.ignore import IgnoreRuleSet, IgnoreSource

if TYPE_CHECKING:
    from src.infra.cancellation import CancellationToken

logger = structlog.get_logger()


def find_vcs_root(start: Path) -> Path | None:
    """Nearest directory at or above start that holds a .git directory."""
    current = start
    while True:
        if (current / VCS_ROOT_MARKER).is_dir():
            return current
        parent = current.parent
        if parent == current:
            return None
        current = parent


class FileDiscoveryService:
    """Project-level ignore rules (.gitignore + tool ignore file) for one root.

    .gitignore is only honoured inside a git repository. The tool ignore
    file is honoured everywhere. Both are loaded once at construction.
    """

    def __init__(
        self,
        project_root: Path,
        *,
        tool_ignore_filename: str = DEFAULT_TOOL_IGNORE_FILENAME,
    ) -> None:
        if not project_root.is_absolute():
            raise ValueError(f"project_root must be absolute: {project_root}")
        self._root = project_root
        self._tool_ignore_filename = tool_ignore_filename
        self._rules = IgnoreRuleSet()
        self._is_git_repo = find_vcs_root(project_root) is not None

        if self._is_git_repo:
            self._rules.add_file(IgnoreSource.vcs, project_root / GIT_IGNORE_FILENAME)
        self._rules.add_file(IgnoreSource.custom, project_root / tool_ignore_filename)
        logger.debug(
            "file_discovery_ready",
            root=str(project_root),
            git_repo=self._is_git_repo,
            vcs_patterns=len(self._rules.patterns(IgnoreSource.vcs)),
            custom_patterns=len(self._rules.patterns(IgnoreSource.custom)),
        )

    @property
    def project_root(self) -> Path:
        return self._root

    @property
    def rules(self) -> IgnoreRuleSet:
        return self._rules

    @property
    def is_git_repository(self) -> bool:
        return self._is_git_repo

    @property
    def tool_ignore_filename(self) -> str:
        return self._tool_ignore_filename

    def tool_ignore_patterns(self) -> list[str]:
        return self._rules.patterns(IgnoreSource.custom)

    def relative(self, path: str | os.PathLike[str]) -> str | None:
        """POSIX path relative to the project root, or None if outside it."""
        rel = os.path.relpath(os.fspath(path), self._root)
        if rel == ".." or rel.startswith(".." + os.sep):
            return None
        return Path(rel).as_posix()

    def _sources(
        self, respect_git_ignore: bool, respect_tool_ignore: bool
    ) -> set[IgnoreSource]:
        sources: set[IgnoreSource] = set()
        if respect_git_ignore:
            sources.add(IgnoreSource.vcs)
        if respect_tool_ignore:
            sources.add(IgnoreSource.custom)
        return sources

    def should_ignore(
        self,
        path: str | os.PathLike[str],
        *,
        is_dir: bool = False,
        respect_git_ignore: bool = True,
        respect_tool_ignore: bool = True,
    ) -> bool:
        rel = self.relative(path)
        if rel is None:
            return False
        sources = self._sources(respect_git_ignore, respect_tool_ignore)
        if not sources:
            return False
        return self._rules.matches(rel, is_dir=is_dir, sources=sources)

    def is_git_ignored(self, path: str | os.PathLike[str], *, is_dir: bool = False) -> bool:
        return self.should_ignore(
            path, is_dir=is_dir, respect_git_ignore=True, respect_tool_ignore=False
        )

    def is_tool_ignored(self, path: str | os.PathLike[str], *, is_dir: bool = False) -> bool:
        return self.should_ignore(
            path, is_dir=is_dir, respect_git_ignore=False, respect_tool_ignore=True
        )

    def filter_files(
        self,
        paths: Iterable[Path],
        *,
        respect_git_ignore: bool = True,
        respect_tool_ignore: bool = True,
    ) -> list[Path]:
        return [
            p
            for p in paths
            if not self.should_ignore(
                p,
                respect_git_ignore=respect_git_ignore,
                respect_tool_ignore=respect_tool_ignore,
            )
        ]


def bfs_file_search(
    root: Path,
    filename: str,
    *,
    max_dirs: int,
    file_service: FileDiscoveryService | None = None,
    respect_git_ignore: bool = False,
    respect_tool_ignore: bool = True,
    skip_dirs: Iterable[str] = (),
    token: CancellationToken | None = None,
) -> list[Path]:
    """Breadth-first search below root for readable files named filename.

    At most max_dirs directories are scanned. Ignored directories are pruned
    before descending; symlinked directories are not followed.
    """
    skip = set(skip_dirs)
    queue: deque[Path] = deque([root])
    visited: set[Path] = set()
    found: list[Path] = []
    scanned = 0

    while queue and scanned < max_dirs:
        if token is not None and token.is_cancelled:
            break
        current = queue.popleft()
        if current in visited:
            continue
        visited.add(current)
        scanned += 1

        try:
            with os.scandir(current) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            logger.debug("bfs_dir_unreadable", path=str(current), error=str(e))
            continue

        for entry in entries:
            full = Path(entry.path)
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
            except OSError:
                continue
            if file_service is not None and file_service.should_ignore(
                full,
                is_dir=is_dir,
                respect_git_ignore=respect_git_ignore,
                respect_tool_ignore=respect_tool_ignore,
            ):
                continue
            if is_dir:
                if entry.name not in skip:
                    queue.append(full)
            elif entry.name == filename and entry.is_file() and os.access(full, os.R_OK):
                found.append(full)

    if queue and scanned >= max_dirs:
        logger.debug("bfs_dir_budget_exhausted", root=str(root), max_dirs=max_dirs)
    return found
