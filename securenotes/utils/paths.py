"""
Path Utilities
==============

OS-aware file permission and write helpers.
"""

from __future__ import annotations

import os
import platform
import re
import secrets
from pathlib import Path
from typing import Final

# Characters not allowed in filenames across all platforms
_UNSAFE_CHARS: Final[re.Pattern[str]] = re.compile(r'[<>:"/\\|?*\x00-\x1f]')

# Read/write for owner only
PRIVATE_FILE_MODE: Final[int] = 0o600
# Read/write/execute for owner only
PRIVATE_DIR_MODE: Final[int] = 0o700
# Read for all, write for owner
READABLE_FILE_MODE: Final[int] = 0o644


def is_posix_host() -> bool:
    """True when POSIX permission bits are meaningful on this host."""
    return platform.system().lower() != "windows"


def get_permission_bits(path: Path | str) -> int:
    """Return the permission bits (mode & 0o777) of a path."""
    return Path(path).stat().st_mode & 0o777


def is_owner_only(path: Path | str) -> bool:
    """True when neither group nor others have any access to the path."""
    return get_permission_bits(path) & 0o077 == 0


def sanitize_filename(filename: str, replacement: str = "_") -> str:
    """
    Sanitize a filename by removing potentially dangerous characters.

    Args:
        filename: The filename to sanitize
        replacement: Character to replace unsafe chars with

    Returns:
        Sanitized filename safe for all platforms
    """
    if not filename:
        raise ValueError("Filename cannot be empty")

    sanitized = _UNSAFE_CHARS.sub(replacement, filename)

    # Remove leading/trailing dots and spaces
    sanitized = sanitized.strip(". ")

    if not sanitized:
        raise ValueError("Filename becomes empty after sanitization")

    # Leave room for the hash prefix
    max_length = 200
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length]

    return sanitized


def create_secure_directory(path: Path | str) -> Path:
    """
    Create a directory accessible only by the owner.

    The mode is re-applied after creation because mkdir honours the umask.
    """
    path = Path(path)
    path.mkdir(mode=PRIVATE_DIR_MODE, parents=True, exist_ok=True)

    if is_posix_host():
        path.chmod(PRIVATE_DIR_MODE)

    return path


def write_file_with_mode(path: Path | str, data: bytes, mode: int = PRIVATE_FILE_MODE) -> None:
    """
    Write bytes to a file that is created with the given mode.

    An existing file has its mode reset before any data is written. A
    symlink in the final component is refused (OSError) rather than followed.
    """
    flags = os.O_WRONLY | os.O_CREAT | os.O_TRUNC | getattr(os, "O_NOFOLLOW", 0)
    fd = os.open(Path(path), flags, mode)
    with os.fdopen(fd, "wb") as f:
        if is_posix_host():
            os.fchmod(f.fileno(), mode)
        f.write(data)
        f.flush()
        os.fsync(f.fileno())


def atomic_write(path: Path | str, data: bytes, mode: int = PRIVATE_FILE_MODE) -> None:
    """
    Replace a file's contents atomically.

    Data goes to a sibling temporary file created with `mode`, is fsynced,
    then renamed over the destination. Readers see either the old or the
    new contents, never a truncated file.
    """
    path = Path(path)
    staging = path.with_name(f".{path.name}.{secrets.token_hex(4)}.tmp")

    try:
        write_file_with_mode(staging, data, mode)
        os.replace(staging, path)
    finally:
        if staging.exists():
            staging.unlink()
