"""
Validation Utilities
====================

Path containment and name validation with security focus.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from securenotes.core.errors import PathSecurityError


def _resolve_candidate(path: Path) -> Path:
    """
    Resolve a path that may not exist yet.

    Symlinks are resolved through the deepest ancestor present on disk,
    then the remaining components are appended, so a missing target cannot
    hide a symlinked parent. A dangling symlink counts as present and is
    resolved to its target.
    """
    path = Path(os.path.abspath(path))
    missing: list[str] = []
    probe = path

    while not os.path.lexists(probe):
        parent = probe.parent
        if parent == probe:
            break
        missing.append(probe.name)
        probe = parent

    resolved = probe.resolve()
    for part in reversed(missing):
        resolved = resolved / part
    return resolved


def is_path_within_directory(path: Path | str, directory: Path | str) -> bool:
    """
    Check if a path is safely within a directory (prevents path traversal).

    Works for both existing and not-yet-existing paths. The directory
    itself does not count as "within".
    """
    try:
        resolved_dir = Path(directory).resolve(strict=True)
        resolved_path = _resolve_candidate(Path(path))
    except (OSError, RuntimeError, ValueError):
        return False

    return resolved_path != resolved_dir and resolved_path.is_relative_to(resolved_dir)


def ensure_within_directory(
    path: Path | str,
    directory: Path | str,
    operation: str = "access",
) -> Path:
    """
    Validate that `path` lies inside `directory`.

    Args:
        path: The path to validate (may not exist)
        directory: The containing directory
        operation: Verb used in the error message

    Returns:
        The resolved path

    Raises:
        PathSecurityError: If the path escapes the directory
    """
    if not is_path_within_directory(path, directory):
        raise PathSecurityError(
            f"Cannot {operation} outside secure directory: {path}",
            path,
            directory,
        )
    return _resolve_candidate(Path(path))


def validate_file_name(value: str) -> Optional[str]:
    """
    Validate a file or folder name for security issues.

    Returns:
        Error message if invalid, None if valid
    """
    if not value or value.strip() == "":
        return "Name cannot be empty"
    if "/" in value or "\\" in value:
        return "Name cannot contain path separators"
    if ".." in value or value == ".":
        return "Name cannot contain path traversal patterns (..)"
    if "\x00" in value:
        return "Name contains invalid characters"
    return None
