"""Reading a single file for model consumption.

Text is windowed (line offset/limit, per-line length cap); images and PDFs
become an inline base64 part; other binary content is refused.
"""

from __future__ import annotations

import base64
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

DEFAULT_ENCODING = "utf-8"
DEFAULT_MAX_LINES = 2000
MAX_LINE_LENGTH = 2000
MAX_FILE_SIZE_BYTES = 20 * 1024 * 1024
_SNIFF_BYTES = 4096

FileType = Literal["text", "image", "pdf", "binary"]

_BINARY_EXTENSIONS = frozenset({
    ".zip", ".tar", ".gz", ".bz2", ".7z", ".rar", ".exe", ".dll", ".so", ".dylib",
    ".class", ".jar", ".war", ".pyc", ".pyo", ".bin", ".dat", ".obj", ".o", ".a",
    ".lib", ".wasm", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".odt",
    ".ods", ".odp",
})


def get_mime_type(path: Path) -> str | None:
    mime, _ = mimetypes.guess_type(path.name)
    return mime


def _looks_binary(path: Path) -> bool:
    try:
        with path.open("rb") as f:
            chunk = f.read(_SNIFF_BYTES)
    except OSError:
        return False
    if not chunk:
        return False
    if b"\x00" in chunk:
        return True
    non_printable = sum(1 for b in chunk if b < 9 or (13 < b < 32))
    return non_printable / len(chunk) > 0.3


def detect_file_type(path: Path) -> FileType:
    """Classify by extension/MIME type, then by sniffing the first bytes."""
    suffix = path.suffix.lower()
    if suffix in (".ts", ".mts", ".cts", ".svg"):
        # .ts guesses as MPEG transport stream; svg is text we can show
        return "text"
    mime = get_mime_type(path) or ""
    if mime.startswith("image/"):
        return "image"
    if mime == "application/pdf":
        return "pdf"
    if suffix in _BINARY_EXTENSIONS:
        return "binary"
    return "binary" if _looks_binary(path) else "text"


@dataclass
class FileReadResult:
    content: str | dict[str, Any] | None
    file_type: FileType = "text"
    error: str | None = None
    is_truncated: bool = False
    total_lines: int = 0
    first_line: int = 0
    last_line: int = 0

    @property
    def is_text(self) -> bool:
        return isinstance(self.content, str)


def inline_part(path: Path, mime_type: str) -> dict[str, Any]:
    data = base64.b64encode(path.read_bytes()).decode("ascii")
    return {"inline_data": {"mime_type": mime_type, "data": data}}


def process_single_file_content(
    path: Path,
    *,
    offset: int | None = None,
    limit: int | None = None,
) -> FileReadResult:
    """Read one file. Errors are returned in the result, never raised."""
    if not path.exists():
        return FileReadResult(content=None, error=f"File not found: {path}")
    if path.is_dir():
        return FileReadResult(content=None, error=f"Path is a directory, not a file: {path}")
    try:
        size = path.stat().st_size
    except OSError as e:
        return FileReadResult(content=None, error=str(e))
    if size > MAX_FILE_SIZE_BYTES:
        return FileReadResult(
            content=None,
            error=(
                f"File size exceeds the {MAX_FILE_SIZE_BYTES // (1024 * 1024)}MB limit: {path.name}"
            ),
        )

    file_type = detect_file_type(path)
    try:
        if file_type == "binary":
            return FileReadResult(
                content=None,
                file_type=file_type,
                error=f"Cannot display content of binary file: {path.name}",
            )
        if file_type in ("image", "pdf"):
            mime = get_mime_type(path) or "application/octet-stream"
            return FileReadResult(content=inline_part(path, mime), file_type=file_type)

        text = path.read_text(encoding=DEFAULT_ENCODING, errors="replace")
    except OSError as e:
        return FileReadResult(content=None, file_type=file_type, error=str(e))

    lines = text.splitlines()
    start = max(offset or 0, 0)
    count = limit if limit and limit > 0 else DEFAULT_MAX_LINES
    end = min(start + count, len(lines))
    window = lines[start:end]

    lines_clipped = False
    shown: list[str] = []
    for line in window:
        if len(line) > MAX_LINE_LENGTH:
            lines_clipped = True
            shown.append(line[:MAX_LINE_LENGTH] + "... [truncated]")
        else:
            shown.append(line)

    return FileReadResult(
        content="\n".join(shown),
        file_type="text",
        is_truncated=lines_clipped or start > 0 or end < len(lines),
        total_lines=len(lines),
        first_line=start + 1 if window else 0,
        last_line=end,
    )
