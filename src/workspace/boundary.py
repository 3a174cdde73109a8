from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path

import structlog

from src.infra.errors import SecurityViolation

logger = structlog.get_logger()


def canonicalize(path: str | os.PathLike[str], *, base: Path | None = None) -> Path:
    """Absolute path with '.', '..' and symlinks resolved (non-strict).

    Relative paths need an explicit base; the process cwd is never consulted.
    """
    candidate = Path(path)
    if not candidate.is_absolute():
        if base is None:
            raise ValueError(f"Relative path without a base directory: {path}")
        candidate = base / candidate
    return candidate.resolve(strict=False)


class WorkspaceBoundary:
    """Set of canonical root directories a tool may touch.

    Roots are canonicalized once at construction; candidates are
    canonicalized per check, so '..' traversal and symlinks pointing
    outside every root are rejected. Read-only after construction.
    """

    def __init__(self, roots: Iterable[str | os.PathLike[str]]) -> None:
        canonical: list[Path] = []
        for root in roots:
            resolved = canonicalize(root)
            if resolved not in canonical:
                canonical.append(resolved)
        if not canonical:
            raise ValueError("WorkspaceBoundary requires at least one root directory")
        self._roots = tuple(canonical)

    @property
    def directories(self) -> tuple[Path, ...]:
        return self._roots

    @property
    def primary(self) -> Path:
        return self._roots[0]

    def is_within(self, path: str | os.PathLike[str]) -> bool:
        """True iff the canonical path equals or descends from some root.

        Relative paths are resolved against the primary root.
        """
        resolved = canonicalize(path, base=self._roots[0])
        return any(resolved == root or resolved.is_relative_to(root) for root in self._roots)

    def root_for(self, path: str | os.PathLike[str]) -> Path | None:
        """The (first) root that contains the path, or None."""
        resolved = canonicalize(path, base=self._roots[0])
        for root in self._roots:
            if resolved == root or resolved.is_relative_to(root):
                return root
        return None

    def require_within(
        self, path: str | os.PathLike[str], *, tool_name: str = ""
    ) -> Path:
        """Return the canonical path, or raise SecurityViolation if it escapes."""
        resolved = canonicalize(path, base=self._roots[0])
        if not self.is_within(resolved):
            logger.warning(
                "workspace_escape_blocked",
                path=str(path),
                resolved=str(resolved),
                tool_name=tool_name,
            )
            raise SecurityViolation(
                f"Path resolves outside the workspace: {path}",
                target=str(resolved),
            )
        return resolved

    def __repr__(self) -> str:
        return f"WorkspaceBoundary({[str(r) for r in self._roots]!r})"
