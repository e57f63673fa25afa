"""
SecureNotes File Operations Module
==================================

Lifecycle of decrypted working copies.

Security Features:
- One plaintext copy per encrypted file
- Debounced re-encryption on every change
- Flush before erase on every exit path
- Overwrite-before-delete erasure

Components:
- editing_surface.py: Boundary to the host editor
- temp_files.py: Plaintext lifecycle manager
- secure_delete.py: Overwrite-then-delete erasure
"""

from securenotes.core.file_ops.editing_surface import (
    EditingSurface,
    ExternalEditorSurface,
    WatchHandle,
)
from securenotes.core.file_ops.secure_delete import (
    secure_delete,
    secure_delete_directory,
)
from securenotes.core.file_ops.temp_files import (
    RecordState,
    TempFileManager,
    TempFileRecord,
)

__all__ = [
    "EditingSurface",
    "ExternalEditorSurface",
    "WatchHandle",
    "secure_delete",
    "secure_delete_directory",
    "RecordState",
    "TempFileManager",
    "TempFileRecord",
]
