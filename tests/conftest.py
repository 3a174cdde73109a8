"""Shared pytest fixtures for Toolsmith tests.

Every fixture builds on tmp_path: tests never touch the real home directory,
the process cwd or the network.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import structlog
from structlog.testing import LogCapture

from src.config.settings import ToolOutputSettings
from src.infra.cancellation import CancellationToken
from src.tools.context import ToolContext
from src.workspace.boundary import WorkspaceBoundary
from src.workspace.discovery import FileDiscoveryService


def make_context(
    target_dir: Path,
    *,
    extra_dirs: tuple[Path, ...] = (),
    output: ToolOutputSettings | None = None,
    **kwargs,
) -> ToolContext:
    target_dir = target_dir.resolve()
    return ToolContext(
        target_dir=target_dir,
        workspace=WorkspaceBoundary([target_dir, *extra_dirs]),
        file_service=FileDiscoveryService(target_dir),
        output=output or ToolOutputSettings(),
        **kwargs,
    )


@pytest.fixture()
def workspace(tmp_path):
    """An isolated workspace with a few text files."""
    ws = tmp_path / "workspace"
    ws.mkdir()
    (ws / "test.md").write_text("hello", encoding="utf-8")
    (ws / "subdir").mkdir()
    (ws / "subdir" / "nested.md").write_text("nested content", encoding="utf-8")
    return ws.resolve()


@pytest.fixture()
def tool_context(workspace):
    return make_context(workspace)


@pytest.fixture()
def context_factory():
    """make_context, for tests that need a context over a custom tree."""
    return make_context


@pytest.fixture()
def token():
    return CancellationToken()


@pytest.fixture()
def log_output():
    """Capture structlog events as dicts for the duration of a test."""
    capture = LogCapture()
    structlog.configure(processors=[capture])
    yield capture
    structlog.reset_defaults()
