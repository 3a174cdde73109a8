"""Security boundary tests for ReadFileTool.

Covers: path traversal, prefix collision, symlink escape, ignored files,
line windows, non-text files.
"""

from __future__ import annotations

import pytest

from src.infra.errors import SecurityViolation, ToolValidationError
from src.tools.base import ToolOutcome
from src.tools.builtins.read_file import ReadFileTool


@pytest.fixture()
def tool(tool_context):
    return ReadFileTool(tool_context)


async def _read(tool, token, **params):
    return await tool.build(params).execute(token)


class TestReadFileHappyPath:
    @pytest.mark.asyncio()
    async def test_read_existing_file(self, tool, token):
        result = await _read(tool, token, path="test.md")
        assert result.ok
        assert result.machine_content == "hello"
        assert result.human_summary == "Read 1 line(s) from test.md"

    @pytest.mark.asyncio()
    async def test_read_nested_file(self, tool, token):
        result = await _read(tool, token, path="subdir/nested.md")
        assert result.machine_content == "nested content"

    @pytest.mark.asyncio()
    async def test_absolute_path_inside_workspace(self, tool, token, workspace):
        result = await _read(tool, token, path=str(workspace / "test.md"))
        assert result.machine_content == "hello"

    @pytest.mark.asyncio()
    async def test_line_window(self, tool, token, workspace):
        (workspace / "lines.txt").write_text("\n".join(f"line {i}" for i in range(1, 11)))
        result = await _read(tool, token, path="lines.txt", offset=2, limit=3)
        assert result.machine_content.startswith(
            "[File content truncated: showing lines 3-5 of 10 total lines."
        )
        assert result.machine_content.endswith("line 3\nline 4\nline 5")
        assert result.human_summary == "Read lines 3-5 of 10 from lines.txt"

    @pytest.mark.asyncio()
    async def test_image_returned_as_part(self, tool, token, workspace):
        (workspace / "pic.png").write_bytes(b"\x89PNG\r\n\x1a\n\x00\x00")
        result = await _read(tool, token, path="pic.png")
        assert result.ok
        [part] = result.machine_content
        assert part["inline_data"]["mime_type"] == "image/png"


class TestReadFilePathTraversal:
    @pytest.mark.asyncio()
    async def test_absolute_path_outside_rejected(self, tool, token):
        with pytest.raises(SecurityViolation):
            await _read(tool, token, path="/etc/passwd")

    @pytest.mark.asyncio()
    async def test_dotdot_escape_rejected(self, tool, token, log_output):
        with pytest.raises(SecurityViolation) as exc_info:
            await _read(tool, token, path="../../etc/passwd")
        assert exc_info.value.code == "SECURITY_VIOLATION"
        assert any(e["event"] == "workspace_escape_blocked" for e in log_output.entries)

    @pytest.mark.asyncio()
    async def test_prefix_collision_rejected(self, tmp_path, token, context_factory):
        """Workspace /tmp/ws must not allow access to /tmp/ws-evil/."""
        ws = tmp_path / "ws"
        ws.mkdir()
        evil = tmp_path / "ws-evil"
        evil.mkdir()
        (evil / "secret.txt").write_text("TOPSECRET", encoding="utf-8")

        tool = ReadFileTool(context_factory(ws))
        with pytest.raises(SecurityViolation):
            await _read(tool, token, path="../ws-evil/secret.txt")

    @pytest.mark.asyncio()
    async def test_symlink_escape_rejected(self, workspace, tmp_path, token, context_factory):
        """Symlink inside workspace pointing outside must be blocked."""
        external = tmp_path / "external"
        external.mkdir()
        (external / "secret.txt").write_text("TOPSECRET", encoding="utf-8")
        (workspace / "escape_link").symlink_to(external / "secret.txt")

        tool = ReadFileTool(context_factory(workspace))
        with pytest.raises(SecurityViolation):
            await _read(tool, token, path="escape_link")

    @pytest.mark.asyncio()
    async def test_symlink_within_workspace_allowed(self, workspace, token, context_factory):
        (workspace / "internal_link").symlink_to(workspace / "test.md")
        tool = ReadFileTool(context_factory(workspace))
        result = await _read(tool, token, path="internal_link")
        assert result.machine_content == "hello"

    @pytest.mark.asyncio()
    async def test_extra_workspace_root_allowed(self, workspace, tmp_path, token, context_factory):
        extra = (tmp_path / "extra").resolve()
        extra.mkdir()
        (extra / "notes.md").write_text("extra notes", encoding="utf-8")
        tool = ReadFileTool(context_factory(workspace, extra_dirs=(extra,)))
        result = await _read(tool, token, path=str(extra / "notes.md"))
        assert result.machine_content == "extra notes"


class TestReadFileFailures:
    @pytest.mark.asyncio()
    async def test_missing_file(self, tool, token):
        result = await _read(tool, token, path="missing.md")
        assert result.outcome == ToolOutcome.failed
        assert result.error_code == "FILE_NOT_FOUND"

    @pytest.mark.asyncio()
    async def test_directory(self, tool, token):
        result = await _read(tool, token, path="subdir")
        assert result.error_code == "READ_ERROR"
        assert "directory" in result.machine_content

    @pytest.mark.asyncio()
    async def test_binary_refused(self, tool, token, workspace):
        (workspace / "blob.dat").write_bytes(b"\x00\x01\x02" * 100)
        result = await _read(tool, token, path="blob.dat")
        assert result.error_code == "READ_ERROR"
        assert "binary" in result.machine_content

    @pytest.mark.asyncio()
    async def test_tool_ignored_file(self, workspace, token, context_factory):
        (workspace / ".toolsmithignore").write_text("secret.md\n", encoding="utf-8")
        (workspace / "secret.md").write_text("hidden", encoding="utf-8")
        tool = ReadFileTool(context_factory(workspace))
        result = await _read(tool, token, path="secret.md")
        assert result.error_code == "FILE_IGNORED"

    @pytest.mark.asyncio()
    async def test_cancelled(self, tool, token):
        token.cancel("user")
        result = await _read(tool, token, path="test.md")
        assert result.outcome == ToolOutcome.cancelled


class TestReadFileValidation:
    def test_blank_path_rejected(self, tool):
        with pytest.raises(ToolValidationError):
            tool.build({"path": "  "})

    def test_wrong_type_rejected(self, tool):
        with pytest.raises(ToolValidationError):
            tool.build({"path": 123})

    def test_negative_offset_rejected(self, tool):
        with pytest.raises(ToolValidationError):
            tool.build({"path": "test.md", "offset": -1})

    def test_description(self, tool):
        assert tool.build({"path": "a.md", "offset": 9, "limit": 5}).get_description() == (
            "Read a.md from line 10 (5 lines)"
        )
