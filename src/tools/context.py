from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from src.config.settings import (
    FileFilteringSettings,
    ShellSettings,
    ToolOutputSettings,
    WebFetchSettings,
)
from src.constants import DEFAULT_CONTEXT_FILENAME
from src.tools.output_budget import OutputBudget
from src.workspace.boundary import WorkspaceBoundary, canonicalize
from src.workspace.discovery import FileDiscoveryService

if TYPE_CHECKING:
    from src.config.settings import Settings


@dataclass(frozen=True)
class ToolContext:
    """Explicit configuration threaded into every tool at construction.

    workspace and file_service are read-only after construction and shared
    by concurrent invocations. Budgets are never shared: new_budget()
    creates one per invocation.
    """

    target_dir: Path
    workspace: WorkspaceBoundary
    file_service: FileDiscoveryService
    output: ToolOutputSettings = field(default_factory=ToolOutputSettings)
    file_filtering: FileFilteringSettings = field(default_factory=FileFilteringSettings)
    shell: ShellSettings = field(default_factory=ShellSettings)
    web_fetch: WebFetchSettings = field(default_factory=WebFetchSettings)
    context_filenames: tuple[str, ...] = (DEFAULT_CONTEXT_FILENAME,)
    session_id: str = "main"

    def resolve_path(self, raw: str | os.PathLike[str]) -> Path:
        """Canonical absolute path; relative input is taken from target_dir."""
        return canonicalize(raw, base=self.target_dir)

    def display_path(self, path: Path) -> str:
        """Path relative to target_dir when inside it, else absolute. POSIX separators."""
        if path == self.target_dir:
            return "."
        if path.is_relative_to(self.target_dir):
            return path.relative_to(self.target_dir).as_posix()
        return path.as_posix()

    def new_budget(self) -> OutputBudget:
        return OutputBudget.from_settings(self.output)


def build_tool_context(settings: Settings, *, session_id: str = "main") -> ToolContext:
    """Assemble the shared tool context from settings (the only ambient read)."""
    target_dir = settings.target_dir.resolve()
    extra_dirs = [d if d.is_absolute() else target_dir / d for d in settings.workspace_dirs]
    return ToolContext(
        target_dir=target_dir,
        workspace=WorkspaceBoundary([target_dir, *extra_dirs]),
        file_service=FileDiscoveryService(
            target_dir,
            tool_ignore_filename=settings.file_filtering.tool_ignore_filename,
        ),
        output=settings.tool_output,
        file_filtering=settings.file_filtering,
        shell=settings.shell,
        web_fetch=settings.web_fetch,
        context_filenames=tuple(settings.context.filenames),
        session_id=session_id,
    )
