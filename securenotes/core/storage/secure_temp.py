"""
Secure Temporary Storage
========================

Chooses where plaintext working copies live and owns the per-session
directory that holds them.

Storage profiles:
    - linux-shm (high): /dev/shm, RAM-backed, plaintext never reaches disk
    - windows-temp / macos-temp (medium): user temp dir, owner-only mode
    - fallback (low): system temp dir, limited protection

Security Notes:
    - The session directory is created 0700 and every file in it 0600
    - Every read, write and delete is checked against the session
      directory after resolving symlinks and ".." components
    - dispose() erases every file before removing the directory
"""

from __future__ import annotations

import hashlib
import logging
import os
import platform
import secrets
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Final, Optional

from securenotes.core.errors import TempStorageError
from securenotes.core.file_ops.secure_delete import (
    DEFAULT_OVERWRITE_PASSES,
    secure_delete,
    secure_delete_directory,
)
from securenotes.utils.paths import (
    PRIVATE_FILE_MODE,
    create_secure_directory,
    sanitize_filename,
    write_file_with_mode,
)
from securenotes.utils.validators import ensure_within_directory, is_path_within_directory


LINUX_SHM_PATH: Final[Path] = Path("/dev/shm")
TEMP_DIR_PREFIX: Final[str] = "secureNotes-"

# Hex characters of the encrypted-path digest used as a name prefix
_NAME_HASH_LENGTH: Final[int] = 12

_log = logging.getLogger("securenotes.storage")


class SecurityLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class StoragePlatform(str, Enum):
    LINUX_SHM = "linux-shm"
    WINDOWS_TEMP = "windows-temp"
    MACOS_TEMP = "macos-temp"
    FALLBACK = "fallback"


@dataclass(frozen=True, slots=True)
class StorageProfile:
    """Where plaintext lives and how well it is protected."""

    platform: StoragePlatform
    base_path: Path
    description: str
    security_level: SecurityLevel

    @classmethod
    def linux_shm(cls, base_path: Path = LINUX_SHM_PATH) -> "StorageProfile":
        return cls(
            StoragePlatform.LINUX_SHM,
            Path(base_path),
            "RAM-based storage (/dev/shm) - data never touches disk",
            SecurityLevel.HIGH,
        )

    @classmethod
    def windows_temp(cls, base_path: Optional[Path] = None) -> "StorageProfile":
        return cls(
            StoragePlatform.WINDOWS_TEMP,
            Path(base_path or tempfile.gettempdir()),
            "User temp directory with restricted permissions - data on disk",
            SecurityLevel.MEDIUM,
        )

    @classmethod
    def macos_temp(cls, base_path: Optional[Path] = None) -> "StorageProfile":
        return cls(
            StoragePlatform.MACOS_TEMP,
            Path(base_path or tempfile.gettempdir()),
            "User temp directory with restricted permissions - data on disk",
            SecurityLevel.MEDIUM,
        )

    @classmethod
    def fallback(cls, base_path: Optional[Path] = None) -> "StorageProfile":
        return cls(
            StoragePlatform.FALLBACK,
            Path(base_path or tempfile.gettempdir()),
            "Standard temp directory - limited protection",
            SecurityLevel.LOW,
        )


@dataclass(frozen=True, slots=True)
class StorageInfo:
    """Report of the active storage, suitable for display."""

    platform: StoragePlatform
    base_path: Path
    temp_dir: Path
    description: str
    security_level: SecurityLevel


def detect_storage_profile(
    system: Optional[str] = None,
    shm_path: Path = LINUX_SHM_PATH,
) -> StorageProfile:
    """
    Pick the most protective storage available on this host.

    Args:
        system: platform.system() value; detected when omitted
        shm_path: RAM-backed mount to probe on Linux

    Returns:
        The selected StorageProfile
    """
    system = (system or platform.system()).lower()

    if system == "linux" and shm_path.is_dir() and os.access(shm_path, os.W_OK | os.X_OK):
        return StorageProfile.linux_shm(shm_path)

    if system == "windows":
        return StorageProfile.windows_temp()

    if system == "darwin":
        return StorageProfile.macos_temp()

    _log.warning("No secure storage for platform %r, using system temp directory", system)
    return StorageProfile.fallback()


class SecureTempStorage:
    """
    Per-session directory for plaintext working copies.

    Usage:
        storage = SecureTempStorage()
        temp = storage.create_temp_path("/notes/todo.md.enc", "todo.md")
        storage.write_secure_file(temp, b"...")
        storage.delete_secure_file(temp)
        storage.dispose()
    """

    __slots__ = ("_profile", "_session_id", "_temp_dir", "_overwrite_passes", "_disposed")

    def __init__(
        self,
        profile: Optional[StorageProfile] = None,
        prefix: str = TEMP_DIR_PREFIX,
        overwrite_passes: int = DEFAULT_OVERWRITE_PASSES,
    ) -> None:
        """
        Create the session directory.

        Raises:
            TempStorageError: If the directory cannot be created
        """
        self._profile = profile or detect_storage_profile()
        self._session_id = secrets.token_hex(8)
        self._overwrite_passes = overwrite_passes
        self._disposed = False

        temp_dir = self._profile.base_path / f"{prefix}{self._session_id}"
        try:
            self._temp_dir = create_secure_directory(temp_dir).resolve()
        except OSError as e:
            raise TempStorageError(f"Cannot create session directory {temp_dir}: {e}") from e

        _log.info(
            "Secure temp storage initialized: platform=%s dir=%s",
            self._profile.platform.value,
            self._temp_dir,
        )

    @property
    def profile(self) -> StorageProfile:
        return self._profile

    @property
    def temp_dir(self) -> Path:
        return self._temp_dir

    def get_storage_info(self) -> StorageInfo:
        return StorageInfo(
            platform=self._profile.platform,
            base_path=self._profile.base_path,
            temp_dir=self._temp_dir,
            description=self._profile.description,
            security_level=self._profile.security_level,
        )

    def is_secure_storage_available(self) -> bool:
        """True unless the fallback profile is in use."""
        return self._profile.platform is not StoragePlatform.FALLBACK

    def is_ram_based(self) -> bool:
        return self._profile.platform is StoragePlatform.LINUX_SHM

    def create_temp_path(self, identifier: str, display_name: str) -> Path:
        """
        Deterministic, collision-resistant path for a working copy.

        The name is a digest of `identifier` followed by the sanitized
        display name, so the editor can still show a meaningful title.
        """
        digest = hashlib.sha256(identifier.encode("utf-8")).hexdigest()[:_NAME_HASH_LENGTH]
        try:
            name = sanitize_filename(display_name)
        except ValueError:
            name = "note"
        return self._temp_dir / f"{digest}_{name}"

    def write_secure_file(self, path: Path | str, content: bytes) -> Path:
        """
        Write a working copy with mode 0600.

        Raises:
            PathSecurityError: If `path` is outside the session directory
        """
        target = ensure_within_directory(path, self._temp_dir, "write")
        write_file_with_mode(target, content, PRIVATE_FILE_MODE)
        _log.debug("Wrote secure temp file %s", target)
        return target

    def read_secure_file(self, path: Path | str) -> bytes:
        target = ensure_within_directory(path, self._temp_dir, "read")
        return target.read_bytes()

    def delete_secure_file(self, path: Path | str) -> bool:
        """
        Overwrite and remove a working copy.

        Returns:
            True if a file was erased, False if it was already gone
        """
        target = ensure_within_directory(path, self._temp_dir, "delete")
        erased = secure_delete(target, passes=self._overwrite_passes)
        if erased:
            _log.debug("Deleted secure temp file %s", target)
        return erased

    def file_exists(self, path: Path | str) -> bool:
        """False for anything outside the session directory."""
        if not is_path_within_directory(path, self._temp_dir):
            return False
        return Path(path).exists()

    def dispose(self) -> None:
        """Erase every file in the session directory and remove it."""
        if self._disposed:
            return
        count = secure_delete_directory(self._temp_dir, passes=self._overwrite_passes)
        self._disposed = True
        _log.info("Secure temp storage disposed: %s (%d files erased)", self._temp_dir, count)

    def __repr__(self) -> str:
        return f"SecureTempStorage({self._profile.platform.value}, {self._temp_dir})"
