"""
Error Taxonomy
==============

Structured exceptions for SecureNotes.

Every error carries a numeric code and a user-facing message so the host
UI can show something actionable without parsing exception text.

Categories:
    - Configuration (1xx): keys not configured, missing or insecure
    - Authentication (11x): wrong or missing passphrase
    - Session (12x): operation attempted while locked
    - Integrity (13x): HMAC mismatch, treated as tampering
    - Operational (14x-2xx): cipher, envelope and I/O failures
    - Security boundary (3xx): path escapes the storage directory

Security Notes:
    - IntegrityCheckFailedError does NOT derive from DecryptionFailedError,
      so a handler for generic failures can never swallow tampering.
    - Messages never include key material or plaintext.
"""

from __future__ import annotations

from enum import IntEnum
from pathlib import Path
from typing import Optional


class ErrorCode(IntEnum):
    """Numeric error codes, grouped by category."""

    # Configuration
    ENCRYPTION_NOT_CONFIGURED = 100
    KEY_NOT_FOUND = 101
    INVALID_KEY = 102
    INSECURE_KEY_PERMISSIONS = 103

    # Authentication
    INVALID_PASSPHRASE = 110
    PASSPHRASE_REQUIRED = 111

    # Session
    NOT_UNLOCKED = 120

    # Integrity
    INTEGRITY_CHECK_FAILED = 130

    # Operational
    ENCRYPTION_FAILED = 140
    DECRYPTION_FAILED = 141
    MALFORMED_ENVELOPE = 142
    FILE_ALREADY_EXISTS = 200
    INVALID_FILE_NAME = 201
    TEMP_STORAGE_FAILED = 210
    TEMP_FILE_CREATE_FAILED = 211
    SECURE_DELETE_FAILED = 212

    # Security boundary
    PATH_OUTSIDE_STORAGE = 300


class SecureNotesError(Exception):
    """
    Base exception for all SecureNotes errors.

    Attributes:
        code: Category code for programmatic handling
        user_message: Actionable text safe to show to the user
    """

    code: ErrorCode = ErrorCode.DECRYPTION_FAILED
    default_user_message: str = "An unexpected error occurred. Please try again."

    def __init__(
        self,
        message: str,
        user_message: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.user_message = user_message or self.default_user_message

    def get_user_message(self) -> str:
        """Get the message to display to the user."""
        return self.user_message

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={int(self.code)}, message={str(self)!r})"


# ============================================================================
# Configuration errors
# ============================================================================


class ConfigurationError(SecureNotesError):
    """Keys are not configured, not found, invalid or insecurely stored."""

    code = ErrorCode.ENCRYPTION_NOT_CONFIGURED
    default_user_message = (
        "Encryption is not configured. Please set your public and private key paths."
    )


class EncryptionNotConfiguredError(ConfigurationError):
    """A key path is unset."""

    def __init__(self, message: str = "Encryption keys not configured") -> None:
        super().__init__(message)


class KeyNotFoundError(ConfigurationError):
    """A configured key file does not exist."""

    code = ErrorCode.KEY_NOT_FOUND

    def __init__(self, key_path: Path | str, key_type: str) -> None:
        super().__init__(
            f"{key_type} key file not found: {key_path}",
            f"{key_type.capitalize()} key file not found. Please check your settings.",
        )
        self.key_path = Path(key_path)
        self.key_type = key_type


class InsecureKeyPermissionsError(ConfigurationError):
    """The private key file is readable by group or others."""

    code = ErrorCode.INSECURE_KEY_PERMISSIONS

    def __init__(self, key_path: Path | str, actual_mode: int) -> None:
        super().__init__(
            f"Private key has insecure permissions ({actual_mode:o}): {key_path}",
            f'Private key has insecure permissions ({actual_mode:o}). '
            f'Run: chmod 600 "{key_path}"',
        )
        self.key_path = Path(key_path)
        self.actual_mode = actual_mode


class InvalidKeyError(ConfigurationError):
    """A key file exists but does not hold a usable RSA key."""

    code = ErrorCode.INVALID_KEY
    default_user_message = "The configured key file is not a valid RSA key."


# ============================================================================
# Authentication errors
# ============================================================================


class AuthenticationError(SecureNotesError):
    """Base class for passphrase problems."""

    code = ErrorCode.INVALID_PASSPHRASE
    default_user_message = "Invalid passphrase. Please try again."


class InvalidPassphraseError(AuthenticationError):
    """The passphrase does not decrypt the private key."""

    def __init__(self, message: str = "Invalid passphrase for private key") -> None:
        super().__init__(message)


class PassphraseRequiredError(AuthenticationError):
    """The private key is encrypted and no passphrase was supplied."""

    code = ErrorCode.PASSPHRASE_REQUIRED
    default_user_message = "Enter the passphrase for your private key."

    def __init__(self, message: str = "Private key is passphrase-protected") -> None:
        super().__init__(message)


# ============================================================================
# Session errors
# ============================================================================


class NotUnlockedError(SecureNotesError):
    """A crypto operation was attempted while the session is locked."""

    code = ErrorCode.NOT_UNLOCKED
    default_user_message = "Please unlock encryption first by entering your passphrase."

    def __init__(self, message: str = "Encryption is not unlocked") -> None:
        super().__init__(message)


# ============================================================================
# Integrity errors
# ============================================================================


class IntegrityCheckFailedError(SecureNotesError):
    """The envelope HMAC does not match: the file appears tampered with."""

    code = ErrorCode.INTEGRITY_CHECK_FAILED
    default_user_message = (
        "File integrity check failed. The file may have been tampered with."
    )

    def __init__(self, file_path: Optional[Path | str] = None) -> None:
        suffix = f" for {file_path}" if file_path else ""
        super().__init__(f"Integrity check failed{suffix}")
        self.file_path = Path(file_path) if file_path else None


# ============================================================================
# Operational errors
# ============================================================================


class EncryptionFailedError(SecureNotesError):
    """The cipher or key wrapping step failed while encrypting."""

    code = ErrorCode.ENCRYPTION_FAILED
    default_user_message = "Failed to encrypt file. Please try again."


class DecryptionFailedError(SecureNotesError):
    """Generic decryption failure (wrong key, cipher tag mismatch)."""

    code = ErrorCode.DECRYPTION_FAILED
    default_user_message = (
        "Failed to decrypt file. The file may be corrupted or the wrong key was used."
    )


class MalformedEnvelopeError(DecryptionFailedError):
    """The file is not a well-formed encrypted envelope."""

    code = ErrorCode.MALFORMED_ENVELOPE
    default_user_message = "The file is not a valid encrypted note."


class FileAlreadyExistsError(SecureNotesError):
    """Refused to overwrite an existing file."""

    code = ErrorCode.FILE_ALREADY_EXISTS
    default_user_message = "A file with this name already exists."

    def __init__(self, file_path: Path | str) -> None:
        super().__init__(f"File already exists: {file_path}")
        self.file_path = Path(file_path)


class InvalidFileNameError(SecureNotesError):
    """A new note name is empty or would leave its folder."""

    code = ErrorCode.INVALID_FILE_NAME
    default_user_message = "That file name is not allowed."

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"Invalid file name {name!r}: {reason}", f"{reason}.")
        self.name = name


class TempStorageError(SecureNotesError):
    """The session storage directory could not be prepared or used."""

    code = ErrorCode.TEMP_STORAGE_FAILED
    default_user_message = "Secure temporary storage is not available."


class TempFileCreateFailedError(TempStorageError):
    """A plaintext working copy could not be written."""

    code = ErrorCode.TEMP_FILE_CREATE_FAILED
    default_user_message = "Failed to create temporary file for editing."


class SecureDeleteError(SecureNotesError):
    """Overwrite-then-delete of a plaintext file failed."""

    code = ErrorCode.SECURE_DELETE_FAILED
    default_user_message = "Failed to securely delete a temporary file."


# ============================================================================
# Security boundary errors
# ============================================================================


class PathSecurityError(SecureNotesError):
    """A path resolved outside the directory it must stay within."""

    code = ErrorCode.PATH_OUTSIDE_STORAGE
    default_user_message = "Security violation: path is outside the secure directory."

    def __init__(self, message: str, target_path: Path | str, base_dir: Path | str) -> None:
        super().__init__(message)
        self.target_path = Path(target_path)
        self.base_dir = Path(base_dir)
