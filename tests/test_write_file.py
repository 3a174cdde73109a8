"""Tests for WriteFileTool: creation, overwrite, confirmation, boundaries."""

from __future__ import annotations

import pytest

from src.infra.errors import SecurityViolation
from src.tools.base import RiskLevel
from src.tools.builtins.write_file import WriteFileTool


@pytest.fixture()
def tool(tool_context):
    return WriteFileTool(tool_context)


async def _run(tool, token, **params):
    return await tool.build(params).execute(token)


class TestWriteFile:
    @pytest.mark.asyncio()
    async def test_creates_new_file_with_parents(self, tool, token, workspace) -> None:
        result = await _run(tool, token, file_path="docs/new/notes.md", content="# Notes\n")
        assert result.ok
        assert result.machine_content == (
            "Successfully created and wrote to new file: docs/new/notes.md"
        )
        assert (workspace / "docs" / "new" / "notes.md").read_text() == "# Notes\n"

    @pytest.mark.asyncio()
    async def test_overwrites_existing(self, tool, token, workspace, log_output) -> None:
        result = await _run(tool, token, file_path="test.md", content="bye")
        assert result.machine_content == "Successfully overwrote file: test.md"
        assert (workspace / "test.md").read_text() == "bye"
        written = [e for e in log_output.entries if e["event"] == "file_written"]
        assert written[0]["created"] is False

    @pytest.mark.asyncio()
    async def test_directory_target(self, tool, token) -> None:
        result = await _run(tool, token, file_path="subdir", content="x")
        assert result.error_code == "TARGET_IS_DIRECTORY"

    @pytest.mark.asyncio()
    async def test_outside_workspace(self, tool, token, tmp_path) -> None:
        with pytest.raises(SecurityViolation):
            await _run(tool, token, file_path="../escape.txt", content="x")
        assert not (tmp_path / "escape.txt").exists()

    @pytest.mark.asyncio()
    async def test_cancelled_before_write(self, tool, token, workspace) -> None:
        token.cancel("user")
        result = await _run(tool, token, file_path="late.txt", content="x")
        assert result.outcome == "cancelled"
        assert not (workspace / "late.txt").exists()


class TestConfirmation:
    def test_high_risk(self, tool) -> None:
        assert tool.risk_level == RiskLevel.high

    def test_always_confirms(self, tool) -> None:
        invocation = tool.build({"file_path": "a.txt", "content": "abc"})
        assert invocation.should_confirm_execute()
        assert invocation.get_description() == "Write 3 character(s) to a.txt"
