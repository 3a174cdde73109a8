"""Tests for ToolContext and build_tool_context."""

from __future__ import annotations

import pytest

from src.config.settings import FileFilteringSettings, Settings, ShellSettings, ToolOutputSettings
from src.tools.context import build_tool_context


class TestToolContext:
    def test_frozen(self, tool_context) -> None:
        with pytest.raises(AttributeError):
            tool_context.session_id = "other"  # type: ignore[misc]

    def test_resolve_relative_path(self, tool_context, workspace) -> None:
        assert tool_context.resolve_path("subdir/../test.md") == workspace / "test.md"

    def test_display_path(self, tool_context, workspace, tmp_path) -> None:
        assert tool_context.display_path(workspace) == "."
        assert tool_context.display_path(workspace / "subdir" / "nested.md") == "subdir/nested.md"
        outside = tmp_path.resolve() / "other.txt"
        assert tool_context.display_path(outside) == outside.as_posix()

    def test_new_budget_is_per_call(self, tool_context) -> None:
        first = tool_context.new_budget()
        second = tool_context.new_budget()
        assert first is not second
        first.record_skip("a", "reason")
        assert second.skipped == []


class TestBuildToolContext:
    def test_from_settings(self, workspace, tmp_path) -> None:
        extra = tmp_path / "extra"
        extra.mkdir()
        settings = Settings(
            target_dir=workspace,
            workspace_dirs=[extra],
            tool_output=ToolOutputSettings(max_items=9),
            file_filtering=FileFilteringSettings(tool_ignore_filename=".myignore"),
            shell=ShellSettings(allowed_commands=["ls"]),
        )
        ctx = build_tool_context(settings, session_id="s1")
        assert ctx.target_dir == workspace
        assert ctx.workspace.directories == (workspace, extra.resolve())
        assert ctx.file_service.tool_ignore_filename == ".myignore"
        assert ctx.output.max_items == 9
        assert ctx.shell.allowed_commands == ["ls"]
        assert ctx.context_filenames == ("AGENT.md",)
        assert ctx.session_id == "s1"

    def test_relative_workspace_dirs_anchor_at_target(self, workspace) -> None:
        settings = Settings(target_dir=workspace, workspace_dirs=["subdir"])
        ctx = build_tool_context(settings)
        assert ctx.workspace.is_within(workspace / "subdir" / "nested.md")
        assert (workspace / "subdir") in ctx.workspace.directories
