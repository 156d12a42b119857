"""
Safe file operations for Repo Compliance.

Provides size-limited, binary-aware text reads confined to a snapshot root.
"""

from pathlib import Path

from .exceptions import UnscannableFileError

# Bytes inspected for NUL characters when sniffing binary content
BINARY_SNIFF_BYTES = 8192


def resolve_within(root: Path, relative_path: str) -> Path:
    """
    Resolve *relative_path* under *root*, refusing paths that escape it.

    Raises:
        UnscannableFileError: If the resolved path lies outside root
    """
    candidate = (root / relative_path).resolve()
    try:
        candidate.relative_to(root.resolve())
    except ValueError:
        raise UnscannableFileError(relative_path, "path escapes snapshot root")
    return candidate


def read_scannable_text(filepath: Path, max_size: int, encoding: str = "utf-8") -> str:
    """
    Read a file as text if it is small enough and not binary.

    Args:
        filepath: File to read
        max_size: Maximum size in bytes
        encoding: Text encoding

    Returns:
        File contents as string

    Raises:
        UnscannableFileError: If the file is oversized, binary, undecodable
            or cannot be read
    """
    try:
        size = filepath.stat().st_size
    except OSError as e:
        raise UnscannableFileError(str(filepath), f"cannot stat: {e}")

    if size > max_size:
        raise UnscannableFileError(str(filepath), f"size {size} exceeds limit {max_size}")

    try:
        raw = filepath.read_bytes()
    except OSError as e:
        raise UnscannableFileError(str(filepath), f"OS error: {e}")

    if b"\x00" in raw[:BINARY_SNIFF_BYTES]:
        raise UnscannableFileError(str(filepath), "binary content")

    try:
        return raw.decode(encoding)
    except UnicodeDecodeError as e:
        raise UnscannableFileError(str(filepath), f"encoding error: {e.reason}")
