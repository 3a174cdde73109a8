"""Tests for ShellTool: execution, validation, confirmation and cancellation.

Spawns real /bin/bash processes inside tmp_path.
"""

from __future__ import annotations

import asyncio

import pytest

from src.config.settings import ShellSettings, ToolOutputSettings
from src.infra.errors import SecurityViolation, ToolValidationError
from src.tools.builtins.shell import ShellTool, cap_output, read_capped


@pytest.fixture()
def tool(tool_context):
    return ShellTool(tool_context)


async def _run(tool, token, **params):
    return await tool.build(params).execute(token)


def _field(content: str, name: str) -> str:
    prefix = f"{name}: "
    return next(line[len(prefix):] for line in content.splitlines() if line.startswith(prefix))


class TestCapOutput:
    def test_within_limit(self) -> None:
        assert cap_output(b"hello", 10) == "hello"

    def test_over_limit(self) -> None:
        assert cap_output(b"abcdef", 3) == "abc\n[output truncated: 6 bytes, showing first 3]"

    def test_reports_full_length_of_cut_stream(self) -> None:
        assert cap_output(b"abc", 3, 5000) == (
            "abc\n[output truncated: 5000 bytes, showing first 3]"
        )


class TestReadCapped:
    @pytest.mark.asyncio()
    async def test_keeps_at_most_limit_and_counts_rest(self) -> None:
        reader = asyncio.StreamReader()
        for _ in range(10):
            reader.feed_data(b"x" * 1000)
        reader.feed_eof()
        kept, total = await read_capped(reader, 2500)
        assert kept == b"x" * 2500
        assert total == 10_000

    @pytest.mark.asyncio()
    async def test_short_stream(self) -> None:
        reader = asyncio.StreamReader()
        reader.feed_data(b"hello")
        reader.feed_eof()
        assert await read_capped(reader, 100) == (b"hello", 5)


class TestExecution:
    @pytest.mark.asyncio()
    async def test_echo(self, tool, token) -> None:
        result = await _run(tool, token, command="echo hello")
        assert result.ok
        assert _field(result.machine_content, "Command") == "echo hello"
        assert _field(result.machine_content, "Directory") == "."
        assert _field(result.machine_content, "Stdout") == "hello"
        assert _field(result.machine_content, "Stderr") == "(empty)"
        assert _field(result.machine_content, "Exit Code") == "0"
        assert _field(result.machine_content, "Signal") == "(none)"
        assert result.human_summary == "hello"

    @pytest.mark.asyncio()
    async def test_runs_in_target_dir(self, tool, token, workspace) -> None:
        result = await _run(tool, token, command="pwd")
        assert _field(result.machine_content, "Stdout") == str(workspace)

    @pytest.mark.asyncio()
    async def test_directory_param(self, tool, token, workspace) -> None:
        result = await _run(tool, token, command="ls", directory="subdir")
        assert _field(result.machine_content, "Directory") == "subdir"
        assert _field(result.machine_content, "Stdout") == "nested.md"

    @pytest.mark.asyncio()
    async def test_non_zero_exit(self, tool, token) -> None:
        result = await _run(tool, token, command="echo oops >&2; exit 3")
        assert result.ok
        assert _field(result.machine_content, "Stderr") == "oops"
        assert _field(result.machine_content, "Exit Code") == "3"
        assert result.human_summary == "Command exited with code 3"

    @pytest.mark.asyncio()
    async def test_output_capped(self, workspace, token, context_factory) -> None:
        ctx = context_factory(workspace, output=ToolOutputSettings(item_size_limit=4))
        result = await _run(ShellTool(ctx), token, command="echo abcdefgh")
        assert "abcd\n[output truncated: 9 bytes, showing first 4]" in result.machine_content

    @pytest.mark.asyncio()
    async def test_large_output_capped(self, workspace, token, context_factory) -> None:
        ctx = context_factory(workspace, output=ToolOutputSettings(item_size_limit=1000))
        result = await _run(
            ShellTool(ctx), token, command="head -c 500000 /dev/zero | tr '\\0' a"
        )
        stdout = _field(result.machine_content, "Stdout")
        assert stdout == "a" * 1000
        assert "[output truncated: 500000 bytes, showing first 1000]" in result.machine_content
        assert _field(result.machine_content, "Exit Code") == "0"

    @pytest.mark.asyncio()
    async def test_lifecycle_logged(self, tool, token, log_output) -> None:
        await _run(tool, token, command="true")
        events = [e["event"] for e in log_output.entries]
        assert "shell_command_started" in events
        assert "shell_command_finished" in events


class TestRejection:
    @pytest.mark.asyncio()
    async def test_command_substitution_rejected(self, tool, token, workspace) -> None:
        with pytest.raises(SecurityViolation, match="Command rejected"):
            await _run(tool, token, command="touch $(echo pwned)")
        assert not (workspace / "pwned").exists()

    @pytest.mark.asyncio()
    async def test_denied_command_rejected(self, workspace, token, context_factory) -> None:
        ctx = context_factory(workspace, shell=ShellSettings(denied_commands=["rm"]))
        with pytest.raises(SecurityViolation):
            await _run(ShellTool(ctx), token, command="rm test.md")
        assert (workspace / "test.md").exists()

    @pytest.mark.asyncio()
    async def test_directory_outside_workspace(self, tool, token) -> None:
        with pytest.raises(SecurityViolation):
            await _run(tool, token, command="ls", directory="..")

    @pytest.mark.asyncio()
    async def test_missing_directory(self, tool, token) -> None:
        result = await _run(tool, token, command="ls", directory="nope")
        assert result.error_code == "NOT_A_DIRECTORY"

    def test_blank_command(self, tool) -> None:
        with pytest.raises(ToolValidationError):
            tool.build({"command": "   "})


class TestConfirmation:
    def test_confirms_without_allow_list(self, tool) -> None:
        assert tool.build({"command": "ls"}).should_confirm_execute()

    def test_allow_listed_commands_skip_confirmation(self, workspace, context_factory) -> None:
        ctx = context_factory(workspace, shell=ShellSettings(allowed_commands=["ls", "echo"]))
        tool = ShellTool(ctx)
        assert not tool.build({"command": "ls -la && echo done"}).should_confirm_execute()
        assert tool.build({"command": "ls; cat x"}).should_confirm_execute()

    def test_description(self, tool) -> None:
        invocation = tool.build(
            {"command": "make test", "directory": "sub", "description": "run\ntests"}
        )
        assert invocation.get_description() == "make test [in sub] (run tests)"


class TestCancellation:
    @pytest.mark.asyncio()
    async def test_cancel_kills_process_group(self, tool, token, workspace, log_output) -> None:
        task = asyncio.create_task(
            _run(tool, token, command="sleep 30 & sleep 30; touch finished")
        )
        await asyncio.sleep(0.3)
        token.cancel("user")
        result = await asyncio.wait_for(task, timeout=5)
        assert result.outcome == "cancelled"
        assert result.human_summary.startswith("Command cancelled")
        assert any(e["event"] == "shell_command_killed" for e in log_output.entries)
        assert not (workspace / "finished").exists()

    @pytest.mark.asyncio()
    async def test_cancelled_before_spawn(self, tool, token) -> None:
        token.cancel("user")
        result = await _run(tool, token, command="echo hi")
        assert result.outcome == "cancelled"
