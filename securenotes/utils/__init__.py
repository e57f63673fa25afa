"""
Utils module - Utility functions and helpers.
"""

from securenotes.utils.paths import (
    atomic_write,
    create_secure_directory,
    sanitize_filename,
)
from securenotes.utils.validators import (
    ensure_within_directory,
    is_path_within_directory,
    validate_file_name,
)

__all__ = [
    "atomic_write",
    "create_secure_directory",
    "sanitize_filename",
    "ensure_within_directory",
    "is_path_within_directory",
    "validate_file_name",
]
