from __future__ import annotations

import os
import shlex
from collections.abc import Iterable
from dataclasses import dataclass

import structlog

logger = structlog.get_logger()

# Control operators that start a new simple command
_COMMAND_SEPARATORS = frozenset({";", "&&", "||", "|", "&", "|&", ";;", "(", ")"})


@dataclass(frozen=True)
class CommandVerdict:
    allowed: bool
    reason: str = ""

    @classmethod
    def allow(cls) -> CommandVerdict:
        return cls(allowed=True)

    @classmethod
    def reject(cls, reason: str) -> CommandVerdict:
        return cls(allowed=False, reason=reason)


def detect_command_substitution(command: str) -> str | None:
    """Return a reason if the command can run a nested command, else None.

    Lexical scan, not a shell parser: single quotes disable everything,
    backslash escapes the next character outside single quotes, and
    substitutions stay live inside double quotes.
    """
    in_single = False
    in_double = False
    i = 0
    n = len(command)
    while i < n:
        c = command[i]
        nxt = command[i + 1] if i + 1 < n else ""
        if in_single:
            if c == "'":
                in_single = False
        elif c == "\\":
            i += 2
            continue
        elif c == "'" and not in_double:
            in_single = True
        elif c == '"':
            in_double = not in_double
        elif c == "`":
            return "backtick command substitution is not allowed"
        elif c == "$" and nxt == "(":
            return "$() command substitution is not allowed"
        elif c in "<>" and nxt == "(" and not in_double:
            return "process substitution is not allowed"
        i += 1
    if in_single or in_double:
        return "unterminated quoted string"
    return None


def split_commands(command: str) -> list[list[str]]:
    """Split a command line into simple commands (token lists).

    Raises ValueError if the line cannot be tokenized.
    """
    lexer = shlex.shlex(command.replace("\n", ";"), posix=True, punctuation_chars=";&|()")
    lexer.whitespace_split = True
    segments: list[list[str]] = [[]]
    for token in lexer:
        if token in _COMMAND_SEPARATORS or set(token) <= set(";&|()"):
            if segments[-1]:
                segments.append([])
            continue
        segments[-1].append(token)
    return [segment for segment in segments if segment]


def command_root(tokens: list[str]) -> str | None:
    """First word of a simple command, skipping VAR=value assignments."""
    for token in tokens:
        name, sep, _ = token.partition("=")
        if sep and name.isidentifier():
            continue
        return os.path.basename(token)
    return None


class ShellCommandValidator:
    """Static check run before any process is spawned.

    Substitutions are refused even when they would be harmless.
    Allow/deny lists match command roots
    (basename of the first word of every simple command in the line).
    """

    def __init__(
        self,
        *,
        allowed_commands: Iterable[str] = (),
        denied_commands: Iterable[str] = (),
    ) -> None:
        self._allowed = frozenset(allowed_commands)
        self._denied = frozenset(denied_commands)

    def validate(self, command: str) -> CommandVerdict:
        verdict = self._validate(command)
        if not verdict.allowed:
            logger.warning("shell_command_rejected", command=command, reason=verdict.reason)
        return verdict

    def _validate(self, command: str) -> CommandVerdict:
        if not command.strip():
            return CommandVerdict.reject("command is empty")

        substitution = detect_command_substitution(command)
        if substitution:
            return CommandVerdict.reject(substitution)

        try:
            segments = split_commands(command)
        except ValueError as e:
            return CommandVerdict.reject(f"command could not be parsed: {e}")

        for segment in segments:
            root = command_root(segment)
            if root is None:
                continue
            if root in self._denied:
                return CommandVerdict.reject(f"command '{root}' is blocked by configuration")
            if self._allowed and root not in self._allowed:
                return CommandVerdict.reject(f"command '{root}' is not in the allowed list")
        return CommandVerdict.allow()

    def command_roots(self, command: str) -> list[str]:
        """Roots of every simple command in the line, in order."""
        try:
            segments = split_commands(command)
        except ValueError:
            return []
        return [root for segment in segments if (root := command_root(segment))]
