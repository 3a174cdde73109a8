"""Tests for ListDirectoryTool."""

from __future__ import annotations

import pytest

from src.config.settings import ToolOutputSettings
from src.infra.errors import SecurityViolation, ToolValidationError
from src.tools.builtins.ls import ListDirectoryTool


@pytest.fixture()
def tool(tool_context):
    return ListDirectoryTool(tool_context)


async def _run(tool, token, **params):
    return await tool.build(params).execute(token)


class TestListDirectory:
    @pytest.mark.asyncio()
    async def test_directories_first(self, tool, token, workspace) -> None:
        (workspace / "a.txt").write_text("a")
        (workspace / "zdir").mkdir()
        result = await _run(tool, token, path=".")
        assert result.machine_content == "\n".join([
            "Directory listing for .:",
            "[DIR] subdir",
            "[DIR] zdir",
            "a.txt",
            "test.md",
        ])
        assert result.human_summary == "Listed 4 item(s)."

    @pytest.mark.asyncio()
    async def test_nested_directory(self, tool, token) -> None:
        result = await _run(tool, token, path="subdir")
        assert result.machine_content == "Directory listing for subdir:\nnested.md"

    @pytest.mark.asyncio()
    async def test_empty_directory(self, tool, token, workspace) -> None:
        (workspace / "empty").mkdir()
        result = await _run(tool, token, path="empty")
        assert result.machine_content == "Directory empty is empty."

    @pytest.mark.asyncio()
    async def test_ignore_patterns(self, tool, token, workspace) -> None:
        (workspace / "debug.log").write_text("x")
        result = await _run(tool, token, path=".", ignore=["*.log", "subdir"])
        assert "debug.log" not in result.machine_content
        assert "subdir" not in result.machine_content
        assert "test.md" in result.machine_content

    @pytest.mark.asyncio()
    async def test_git_ignored_entries_counted(self, workspace, token, context_factory) -> None:
        (workspace / ".git").mkdir()
        (workspace / ".gitignore").write_text("*.log\n")
        (workspace / "debug.log").write_text("x")
        result = await _run(ListDirectoryTool(context_factory(workspace)), token, path=".")
        assert "debug.log" not in result.machine_content
        assert result.machine_content.endswith("(1 git-ignored)")
        assert result.human_summary.endswith("(1 ignored)")

    @pytest.mark.asyncio()
    async def test_git_ignore_can_be_bypassed(self, workspace, token, context_factory) -> None:
        (workspace / ".git").mkdir()
        (workspace / ".gitignore").write_text("*.log\n")
        (workspace / "debug.log").write_text("x")
        result = await _run(
            ListDirectoryTool(context_factory(workspace)),
            token,
            path=".",
            file_filtering_options={"respect_git_ignore": False},
        )
        assert "debug.log" in result.machine_content

    @pytest.mark.asyncio()
    async def test_tool_ignored_entries_counted(self, workspace, token, context_factory) -> None:
        (workspace / ".toolsmithignore").write_text("subdir/\n")
        result = await _run(ListDirectoryTool(context_factory(workspace)), token, path=".")
        assert "[DIR] subdir" not in result.machine_content
        assert "(1 ignored by .toolsmithignore)" in result.machine_content


class TestFailures:
    @pytest.mark.asyncio()
    async def test_missing_directory(self, tool, token) -> None:
        result = await _run(tool, token, path="nope")
        assert result.error_code == "FILE_NOT_FOUND"

    @pytest.mark.asyncio()
    async def test_file_is_not_a_directory(self, tool, token) -> None:
        result = await _run(tool, token, path="test.md")
        assert result.error_code == "NOT_A_DIRECTORY"

    @pytest.mark.asyncio()
    async def test_outside_workspace(self, tool, token) -> None:
        with pytest.raises(SecurityViolation):
            await _run(tool, token, path="..")

    @pytest.mark.asyncio()
    async def test_cancelled(self, tool, token) -> None:
        token.cancel("user")
        result = await _run(tool, token, path=".")
        assert result.outcome == "cancelled"


class TestLimits:
    @pytest.mark.asyncio()
    async def test_count_overflow_warns(self, workspace, token, context_factory) -> None:
        for i in range(5):
            (workspace / f"f{i}.txt").write_text("x")
        ctx = context_factory(workspace, output=ToolOutputSettings(max_items=3))
        result = await _run(ListDirectoryTool(ctx), token, path=".")
        assert result.machine_content.startswith("Found 7 entries matching your pattern")

    @pytest.mark.asyncio()
    async def test_count_overflow_truncates(self, workspace, token, context_factory) -> None:
        for i in range(5):
            (workspace / f"f{i}.txt").write_text("x")
        ctx = context_factory(
            workspace, output=ToolOutputSettings(max_items=3, truncate_mode="truncate")
        )
        result = await _run(ListDirectoryTool(ctx), token, path=".")
        assert result.machine_content.splitlines()[1:4] == ["[DIR] subdir", "f0.txt", "f1.txt"]
        assert result.machine_content.endswith("(4 more not shown)")


class TestValidation:
    def test_blank_path(self, tool) -> None:
        with pytest.raises(ToolValidationError):
            tool.build({"path": " "})

    def test_description(self, tool) -> None:
        assert tool.build({"path": "src"}).get_description() == "src"
