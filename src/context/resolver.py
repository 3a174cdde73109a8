"""Hierarchical context discovery.

For every working directory and every context filename, files are found in
three phases and kept in this precedence order:

1. global: {home}/{config_dir}/{filename};
2. upward: from the directory up to the parent of its project root (or the
   parent of home when there is no project root), root-to-leaf;
3. downward: breadth-first below the directory, lexicographically sorted.

Results are deduplicated by canonical path, extension-provided files are
appended last, imports are expanded and the non-empty files are joined into
one startup document.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from src.constants import (
    CONTEXT_SCAN_SKIP_DIRS,
    DEFAULT_CONFIG_DIR_NAME,
    DEFAULT_CONTEXT_FILENAME,
)
from src.context.imports import ImportProcessor
from src.infra.errors import ContextError
from src.workspace.boundary import WorkspaceBoundary, canonicalize
from src.workspace.discovery import FileDiscoveryService, bfs_file_search, find_vcs_root

if TYPE_CHECKING:
    from src.config.settings import Settings
    from src.infra.cancellation import CancellationToken

logger = structlog.get_logger()


@dataclass
class ContextFile:
    """One discovered context file. Contents are None when it could not be read."""

    path: Path
    raw_content: str | None
    resolved_content: str | None
    import_depth: int = 0


@dataclass
class ContextResult:
    content: str
    file_count: int
    files: list[ContextFile] = field(default_factory=list)
    diagnostics: list[str] = field(default_factory=list)


def _readable_file(path: Path) -> bool:
    return path.is_file() and os.access(path, os.R_OK)


class HierarchicalContextResolver:
    """Assembles the session-startup context document. One instance per session."""

    def __init__(
        self,
        working_dir: Path,
        *,
        home_dir: Path,
        filenames: Sequence[str] = (DEFAULT_CONTEXT_FILENAME,),
        config_dir_name: str = DEFAULT_CONFIG_DIR_NAME,
        include_directories: Iterable[Path] = (),
        extension_paths: Iterable[Path] = (),
        file_service: FileDiscoveryService | None = None,
        import_format: str = "tree",
        max_dirs: int = 200,
        max_import_depth: int = 5,
        respect_git_ignore: bool = False,
        respect_tool_ignore: bool = True,
    ) -> None:
        if not filenames:
            raise ContextError("At least one context filename is required")
        if not working_dir.is_absolute() or not home_dir.is_absolute():
            raise ContextError("working_dir and home_dir must be absolute paths")

        self._working_dir = canonicalize(working_dir)
        self._home_dir = canonicalize(home_dir)
        self._filenames = list(dict.fromkeys(filenames))
        self._global_dir = self._home_dir / config_dir_name
        self._directories = list(
            dict.fromkeys(
                [self._working_dir]
                + [canonicalize(d, base=self._working_dir) for d in include_directories]
            )
        )
        self._extension_paths = [canonicalize(p, base=self._working_dir) for p in extension_paths]
        self._file_service = file_service or FileDiscoveryService(self._working_dir)
        self._import_format = import_format
        self._max_dirs = max_dirs
        self._max_import_depth = max_import_depth
        self._respect_git_ignore = respect_git_ignore
        self._respect_tool_ignore = respect_tool_ignore

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        file_service: FileDiscoveryService | None = None,
        extension_paths: Iterable[Path] = (),
    ) -> HierarchicalContextResolver:
        ctx = settings.context
        return cls(
            settings.target_dir.resolve(),
            home_dir=settings.home_dir.resolve(),
            filenames=ctx.filenames,
            config_dir_name=ctx.config_dir_name,
            include_directories=ctx.include_directories,
            extension_paths=extension_paths,
            file_service=file_service,
            import_format=ctx.import_format,
            max_dirs=ctx.max_dirs,
            max_import_depth=ctx.max_import_depth,
            respect_git_ignore=ctx.respect_git_ignore,
            respect_tool_ignore=ctx.respect_tool_ignore,
        )

    @property
    def working_dir(self) -> Path:
        return self._working_dir

    @property
    def directories(self) -> list[Path]:
        return list(self._directories)

    # ── discovery ──

    def global_path(self, filename: str) -> Path | None:
        path = self._global_dir / filename
        return path if _readable_file(path) else None

    def upward_paths(self, start: Path, filename: str) -> list[Path]:
        """Matches from the stop directory down to start (root-to-leaf)."""
        project_root = find_vcs_root(start)
        stop_dir = project_root.parent if project_root else self._home_dir.parent
        global_path = self._global_dir / filename

        found: list[Path] = []
        current = start
        while current != current.parent:
            if current == self._global_dir:
                break
            candidate = current / filename
            if candidate != global_path and _readable_file(candidate):
                found.append(candidate)
            if current == stop_dir:
                break
            current = current.parent
        found.reverse()
        return found

    def downward_paths(
        self, start: Path, filename: str, token: CancellationToken | None = None
    ) -> list[Path]:
        found = bfs_file_search(
            start,
            filename,
            max_dirs=self._max_dirs,
            file_service=self._file_service,
            respect_git_ignore=self._respect_git_ignore,
            respect_tool_ignore=self._respect_tool_ignore,
            skip_dirs=CONTEXT_SCAN_SKIP_DIRS,
            token=token,
        )
        return sorted(found, key=lambda p: p.as_posix())

    def _paths_for_directory(
        self, directory: Path, token: CancellationToken | None
    ) -> list[Path]:
        paths: list[Path] = []
        for filename in self._filenames:
            global_path = self.global_path(filename)
            if global_path is not None:
                paths.append(global_path)
            paths.extend(self.upward_paths(directory, filename))
            paths.extend(self.downward_paths(directory, filename, token))
        return paths

    async def discover(self, token: CancellationToken | None = None) -> list[Path]:
        """Ordered, deduplicated context file paths. Extension paths come last."""
        batches = await asyncio.gather(
            *(
                asyncio.to_thread(self._paths_for_directory, directory, token)
                for directory in self._directories
            )
        )
        merged: dict[Path, None] = {}
        for batch in batches:
            for path in batch:
                merged.setdefault(canonicalize(path), None)
        for path in self._extension_paths:
            merged.setdefault(path, None)
        return list(merged)

    # ── reading ──

    def _import_boundary(self, paths: Iterable[Path]) -> WorkspaceBoundary:
        roots: list[Path] = [*self._directories, self._global_dir]
        for directory in self._directories:
            project_root = find_vcs_root(directory)
            if project_root is not None:
                roots.append(project_root)
        roots.extend(path.parent for path in paths)
        return WorkspaceBoundary(roots)

    def _read_one(self, path: Path, processor: ImportProcessor) -> tuple[ContextFile, list[str]]:
        try:
            raw = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("context_file_read_failed", path=str(path), error=str(e))
            return ContextFile(path, None, None), [f"{path}: could not be read: {e}"]
        result = processor.process(raw, path)
        return ContextFile(path, raw, result.content, result.import_depth), result.diagnostics

    def display_path(self, path: Path) -> str:
        return Path(os.path.relpath(path, self._working_dir)).as_posix()

    def concatenate(self, files: Iterable[ContextFile]) -> tuple[str, int]:
        """Join non-empty files into delimited blocks. Returns (document, block count)."""
        blocks: list[str] = []
        for file in files:
            if file.resolved_content is None:
                continue
            trimmed = file.resolved_content.strip()
            if not trimmed:
                continue
            display = self.display_path(file.path)
            blocks.append(
                f"--- Context from: {display} ---\n{trimmed}\n"
                f"--- End of Context from: {display} ---"
            )
        return "\n\n".join(blocks), len(blocks)

    async def resolve(self, token: CancellationToken | None = None) -> ContextResult:
        """Discover, read and expand every context file into one document.

        Read failures are recorded, never raised. Cancellation observed after
        discovery returns an empty document.
        """
        paths = await self.discover(token)
        processor = ImportProcessor(
            allowed=self._import_boundary(paths),
            import_format=self._import_format,
            max_depth=self._max_import_depth,
        )
        if token is not None and token.is_cancelled:
            return ContextResult(
                content="", file_count=0, diagnostics=["context loading cancelled"]
            )

        # Independent import chains expand concurrently
        results = await asyncio.gather(
            *(asyncio.to_thread(self._read_one, path, processor) for path in paths)
        )
        files = [file for file, _ in results]
        diagnostics = [message for _, messages in results for message in messages]
        content, file_count = self.concatenate(files)
        logger.info(
            "context_files_loaded",
            discovered=len(paths),
            file_count=file_count,
            diagnostics=len(diagnostics),
        )
        return ContextResult(
            content=content, file_count=file_count, files=files, diagnostics=diagnostics
        )
