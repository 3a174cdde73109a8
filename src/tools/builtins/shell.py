from __future__ import annotations

import asyncio
import os
import signal
from typing import TYPE_CHECKING

import structlog

from src.infra.errors import SecurityViolation
from src.tools.base import DeclarativeTool, ToolInvocation, ToolResult
from src.tools.shell_validator import ShellCommandValidator

if TYPE_CHECKING:
    from src.infra.cancellation import CancellationToken
    from src.tools.context import ToolContext

logger = structlog.get_logger()


READ_CHUNK_BYTES = 64 * 1024


def cap_output(data: bytes, limit: int, total: int | None = None) -> str:
    """Decode a captured stream, keeping at most limit bytes.

    total is the full stream length when data was already cut short.
    """
    total = len(data) if total is None else total
    text = data[:limit].decode("utf-8", errors="replace")
    if total > limit:
        text += f"\n[output truncated: {total} bytes, showing first {limit}]"
    return text


async def read_capped(stream: asyncio.StreamReader, limit: int) -> tuple[bytes, int]:
    """Read a stream to EOF, keeping at most limit bytes; returns (kept, total)."""
    kept = bytearray()
    total = 0
    while chunk := await stream.read(READ_CHUNK_BYTES):
        total += len(chunk)
        room = limit - len(kept)
        if room > 0:
            kept += chunk[:room]
    return bytes(kept), total


def _kill_process_group(proc: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


class ShellInvocation(ToolInvocation):
    def __init__(
        self,
        tool: ShellTool,
        params: dict,
        context: ToolContext,
        validator: ShellCommandValidator,
    ) -> None:
        super().__init__(tool, params, context)
        self._validator = validator

    def get_description(self) -> str:
        desc = self.params["command"]
        if self.params.get("directory"):
            desc += f" [in {self.params['directory']}]"
        if self.params.get("description"):
            desc += f" ({self.params['description'].replace(chr(10), ' ')})"
        return desc

    def should_confirm_execute(self) -> bool:
        """Skip confirmation only when every command is explicitly allowed."""
        allowed = set(self.context.shell.allowed_commands)
        if not allowed:
            return True
        roots = self._validator.command_roots(self.params["command"])
        return not roots or not set(roots) <= allowed

    async def execute(self, token: CancellationToken) -> ToolResult:
        ctx = self.context
        command: str = self.params["command"]

        verdict = self._validator.validate(command)
        if not verdict.allowed:
            raise SecurityViolation(
                f"Command rejected: {verdict.reason}", target=command
            )

        cwd = ctx.target_dir
        if self.params.get("directory"):
            cwd = ctx.workspace.require_within(
                ctx.resolve_path(self.params["directory"]), tool_name="run_shell_command"
            )
            if not cwd.is_dir():
                return ToolResult.failure(
                    "NOT_A_DIRECTORY", f"Directory does not exist: {ctx.display_path(cwd)}"
                )

        if token.is_cancelled:
            return ToolResult.cancelled()
        proc = await asyncio.create_subprocess_exec(
            ctx.shell.executable,
            "-c",
            command,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
        logger.info("shell_command_started", command=command, pid=proc.pid, cwd=str(cwd))

        limit = ctx.output.item_size_limit
        collect = asyncio.gather(
            read_capped(proc.stdout, limit), read_capped(proc.stderr, limit), proc.wait()
        )
        cancelled = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({collect, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()

        if not collect.done():
            _kill_process_group(proc)
            collect.cancel()
            await asyncio.wait({collect})
            await proc.wait()
            logger.info("shell_command_killed", pid=proc.pid, reason=token.reason)
            return ToolResult.cancelled(f"Command cancelled: {command}")

        (stdout, stdout_total), (stderr, stderr_total), _ = collect.result()
        exit_code = proc.returncode
        signal_desc = "(none)"
        if exit_code is not None and exit_code < 0:
            signal_desc = signal.Signals(-exit_code).name
            exit_code = None

        out = cap_output(stdout, limit, stdout_total)
        err = cap_output(stderr, limit, stderr_total)
        content = "\n".join([
            f"Command: {command}",
            f"Directory: {ctx.display_path(cwd)}",
            f"Stdout: {out or '(empty)'}",
            f"Stderr: {err or '(empty)'}",
            f"Exit Code: {exit_code if exit_code is not None else '(none)'}",
            f"Signal: {signal_desc}",
        ])
        if exit_code == 0:
            summary = out.strip() or "Command completed with no output."
        else:
            summary = f"Command exited with code {exit_code}" if exit_code is not None else (
                f"Command terminated by signal {signal_desc}"
            )
        logger.info("shell_command_finished", pid=proc.pid, exit_code=proc.returncode)
        return ToolResult(machine_content=content, human_summary=summary)


class ShellTool(DeclarativeTool):
    """Run a shell command inside the workspace after static validation."""

    def __init__(self, context: ToolContext) -> None:
        super().__init__(context)
        self._command_validator = ShellCommandValidator(
            allowed_commands=context.shell.allowed_commands,
            denied_commands=context.shell.denied_commands,
        )

    @property
    def name(self) -> str:
        return "run_shell_command"

    @property
    def display_name(self) -> str:
        return "Shell"

    @property
    def description(self) -> str:
        return (
            f"Executes a command with `{self.context.shell.executable} -c <command>`. "
            "Command substitution ($(...), backticks, <(...), >(...)) is not allowed. "
            "The command runs in its own process group, which is killed on cancellation. "
            "Returns Command, Directory, Stdout, Stderr, Exit Code and Signal."
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "minLength": 1,
                    "description": "Exact command to execute.",
                },
                "description": {
                    "type": "string",
                    "description": "Brief description of the command for the user.",
                },
                "directory": {
                    "type": "string",
                    "description": (
                        "Directory to run the command in, relative to the target directory. "
                        "Must be inside the workspace."
                    ),
                },
            },
            "required": ["command"],
        }

    def validate_params(self, params: dict) -> list[str]:
        if not params["command"].strip():
            return ["command: must not be blank"]
        return []

    def create_invocation(self, params: dict) -> ShellInvocation:
        return ShellInvocation(self, params, self.context, self._command_validator)
