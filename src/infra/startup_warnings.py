"""Warnings produced before logging is configured, handed to the first session.

Early startup code appends lines to a temporary file; the session reads them
once and deletes the file.
"""

from __future__ import annotations

from pathlib import Path

import structlog

logger = structlog.get_logger()

STARTUP_WARNINGS_FILENAME = "toolsmith-warnings.txt"


def record_startup_warning(path: Path, message: str) -> None:
    with path.open("a", encoding="utf-8") as f:
        f.write(message.rstrip("\n") + "\n")


def get_startup_warnings(path: Path) -> list[str]:
    """Return the recorded warnings and delete the file.

    A missing file means no warnings. Problems reading or deleting the file
    are reported as warnings themselves rather than raised.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return []
    except OSError as e:
        return [f"Error checking/reading warnings file: {e.strerror or e}"]

    warnings = [line for line in content.splitlines() if line.strip()]
    try:
        path.unlink()
    except OSError as e:
        logger.warning("startup_warnings_unlink_failed", path=str(path), error=str(e))
        warnings.append("Warning: Could not delete temporary warnings file.")
    return warnings
