"""File handler module: vault path validation and encoding-aware note I/O.

Provides the file primitives used by ``DailyNoteManager``. Reads detect
the encoding with charset-normalizer so notes written by other tools in a
legacy encoding are not mangled; writes keep that encoding and go through
a temp file plus ``os.replace()`` so a crash never leaves half a note.
"""

import os
import tempfile
from pathlib import Path

from charset_normalizer import from_bytes

from .errors import NotFoundError, ValidationError
from .validators import normalize_relative_path

# =============================================================================
# Path Validation
# =============================================================================


def resolve_in_vault(vault_root: Path, relative: str) -> Path:
    """Resolve a vault-relative path and make sure it stays inside the vault.

    Args:
        vault_root: Root directory of the note collection.
        relative: Path relative to *vault_root*.

    Returns:
        Resolved absolute Path.

    Raises:
        ValidationError: If the path is malformed or escapes the vault.
    """
    ok, value = normalize_relative_path(relative)
    if not ok:
        raise ValidationError(value)
    root = vault_root.resolve()
    resolved = (root / value).resolve()
    if not resolved.is_relative_to(root):
        raise ValidationError(
            f"Path is outside the vault: {resolved} not under {root}"
        )
    return resolved


def validate_note_file(path: Path) -> Path:
    """Check that *path* names an existing regular file.

    Raises:
        NotFoundError: If the file does not exist.
        ValidationError: If the path exists but is not a file.
    """
    if not path.exists():
        raise NotFoundError(f"Note not found: {path}")
    if not path.is_file():
        raise ValidationError(f"Path is not a file: {path}")
    return path


# =============================================================================
# File Read/Write
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a file with automatic encoding detection.

    Reads raw bytes first, then uses charset-normalizer to detect encoding.
    Defaults to UTF-8 for empty files or when detection fails.

    Args:
        path: Path to the file to read.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    raw = path.read_bytes()
    if not raw:
        return ("", "utf-8")

    result = from_bytes(raw).best()
    if result is None:
        encoding = "utf-8"
        content = raw.decode(encoding, errors="replace")
    else:
        encoding = result.encoding
        # ascii is a strict subset of utf-8
        if encoding == "ascii":
            encoding = "utf-8"
        content = str(result)
    return (content, encoding)


def write_file(path: Path, content: str, encoding: str = "utf-8") -> int:
    """Atomically write content to a file, creating parent directories.

    Args:
        path: Path to the output file.
        content: String content to write.
        encoding: Encoding to use (default: utf-8).

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    encoded = content.encode(encoding)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(encoded)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    return len(encoded)


def read_lines(path: Path) -> tuple[list[str], str, str]:
    """Read a note as a list of lines without line terminators.

    Returns:
        Tuple of (lines, encoding, newline) where newline is ``"\\r\\n"``
        when the file uses Windows line endings and ``"\\n"`` otherwise.
    """
    content, encoding = read_file_with_encoding(validate_note_file(path))
    newline = "\r\n" if "\r\n" in content else "\n"
    return content.splitlines(), encoding, newline


def write_lines(
    path: Path, lines: list[str], encoding: str = "utf-8", newline: str = "\n"
) -> int:
    """Write *lines* back as a note, ending with a single newline."""
    return write_file(path, newline.join(lines) + newline, encoding)
