"""
Secure Deletion Module
======================

Overwrite-then-delete erasure of plaintext working copies.

Security Properties:
- Multiple overwrite passes, each fsynced
- Truncate before unlink
- Verification after deletion

Known limitation:
    On copy-on-write or log-structured filesystems (btrfs, ZFS, APFS, most
    SSD firmware) overwriting a file in place writes new blocks and leaves
    the old ones intact. Overwrite-before-delete is best effort there; the
    RAM-backed storage profile is the real protection.
"""

from __future__ import annotations

import logging
import os
import secrets
from pathlib import Path
from typing import Final

from securenotes.core.errors import SecureDeleteError


# Deletion parameters
DEFAULT_OVERWRITE_PASSES: Final[int] = 3
BLOCK_SIZE: Final[int] = 4096

_log = logging.getLogger("securenotes.storage")


def _pass_block(pass_num: int, size: int) -> bytes:
    # zeros, ones, then random for every further pass
    if pass_num == 0:
        return bytes(size)
    if pass_num == 1:
        return b"\xff" * size
    return secrets.token_bytes(size)


def _overwrite(path: Path, passes: int) -> None:
    file_size = path.stat().st_size
    if file_size == 0:
        return

    with open(path, "r+b") as f:
        for pass_num in range(passes):
            f.seek(0)
            offset = 0
            while offset < file_size:
                block = _pass_block(pass_num, min(BLOCK_SIZE, file_size - offset))
                f.write(block)
                offset += len(block)
            f.flush()
            os.fsync(f.fileno())


def secure_delete(
    path: Path | str,
    passes: int = DEFAULT_OVERWRITE_PASSES,
    verify: bool = True,
) -> bool:
    """
    Securely delete a file by overwriting before deletion.

    Args:
        path: Path to file to delete
        passes: Number of overwrite passes
        verify: Whether to verify deletion

    Returns:
        True if a file was erased, False if it did not exist

    Raises:
        SecureDeleteError: If deletion fails

    Overwrite Pattern:
        Pass 1: All zeros
        Pass 2: All ones
        Pass 3+: Random data
    """
    path = Path(path)

    if not path.exists() and not path.is_symlink():
        return False

    if path.is_symlink() or not path.is_file():
        raise SecureDeleteError(f"Not a regular file: {path}")

    try:
        _overwrite(path, passes)

        with open(path, "wb"):
            pass

        path.unlink()

    except OSError as e:
        raise SecureDeleteError(f"Secure deletion failed for {path}: {e}") from e

    if verify and path.exists():
        raise SecureDeleteError(f"File still exists after deletion: {path}")

    _log.debug("Securely deleted %s", path)
    return True


def secure_delete_directory(
    path: Path | str,
    passes: int = DEFAULT_OVERWRITE_PASSES,
) -> int:
    """
    Securely delete all files in a directory, then the directory itself.

    Args:
        path: Directory path
        passes: Number of overwrite passes

    Returns:
        Number of files erased

    Raises:
        SecureDeleteError: If a file cannot be erased or the tree removed
    """
    path = Path(path)

    if not path.exists():
        return 0

    if not path.is_dir():
        raise SecureDeleteError(f"Not a directory: {path}")

    count = 0
    for item in sorted(path.rglob("*"), reverse=True):
        if item.is_symlink():
            item.unlink()
        elif item.is_file():
            secure_delete(item, passes=passes)
            count += 1

    try:
        for item in sorted(path.rglob("*"), reverse=True):
            if item.is_dir():
                item.rmdir()
        path.rmdir()
    except OSError as e:
        raise SecureDeleteError(f"Failed to remove directory {path}: {e}") from e

    return count
