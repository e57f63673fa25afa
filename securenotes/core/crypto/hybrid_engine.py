"""
Hybrid Encryption Engine
========================

RSA-OAEP key wrapping over AES-256-GCM content encryption, with an
independent HMAC-SHA256 integrity tag.

Encryption Flow:
    plaintext
        ↓ AES-256-GCM (fresh random file key, fresh nonce)
    ciphertext + auth tag
        ↓ HMAC-SHA256(file key, ciphertext)
    hmac
        ↓ RSA-OAEP(SHA-256) wrap of the file key under the public key
    EncryptedEnvelope {version, encryptedKey, iv, authTag, content, hmac}

Decryption Flow:
    EncryptedEnvelope
        ↓ RSA-OAEP unwrap → file key
        ↓ HMAC verify (constant time) → IntegrityCheckFailedError on mismatch
        ↓ AES-256-GCM decrypt (tag verify) → DecryptionFailedError on mismatch
    plaintext

The HMAC is keyed with the same per-file key as the cipher.

WARNING:
    - Crypto operations require an unlocked Session (fail fast otherwise)
    - Integrity is verified before any plaintext is produced
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Final, Mapping, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding

from securenotes.core.auth.session_control import Session
from securenotes.core.config import EncryptionConfig
from securenotes.core.crypto import rsa_keys
from securenotes.core.crypto.aes_gcm import (
    AES_KEY_SIZE,
    AesGcmCipher,
    SealedContent,
    content_mac,
    content_mac_matches,
    new_file_key,
)
from securenotes.core.errors import (
    AuthenticationError,
    DecryptionFailedError,
    EncryptionFailedError,
    EncryptionNotConfiguredError,
    FileAlreadyExistsError,
    IntegrityCheckFailedError,
    InvalidFileNameError,
    MalformedEnvelopeError,
)
from securenotes.core.memory.zeroization import wiped
from securenotes.utils.paths import PRIVATE_FILE_MODE, atomic_write
from securenotes.utils.validators import validate_file_name


# Current envelope format version
ENVELOPE_VERSION: Final[int] = 2
# First version that carries an HMAC
HMAC_MIN_VERSION: Final[int] = 2

ENCRYPTED_SUFFIX: Final[str] = ".enc"

_REQUIRED_FIELDS: Final[dict[str, type]] = {
    "version": int,
    "encryptedKey": str,
    "iv": str,
    "authTag": str,
    "content": str,
}
_KNOWN_FIELDS: Final[frozenset[str]] = frozenset(_REQUIRED_FIELDS) | {"hmac"}

PassphraseProvider = Callable[[], Optional[str]]


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(value: str, field_name: str) -> bytes:
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise MalformedEnvelopeError(f"Field {field_name!r} is not valid base64") from e


@dataclass(frozen=True, slots=True)
class EncryptedEnvelope:
    """
    Immutable persisted unit of an encrypted note.

    JSON wire format (UTF-8):
        {"version": 2, "encryptedKey": b64, "iv": b64, "authTag": b64,
         "content": b64, "hmac": b64}

    `hmac` is absent in version 1. Fields this version does not know are
    kept in `extra` and written back unchanged.
    """

    version: int
    encrypted_key: bytes
    iv: bytes
    auth_tag: bytes
    content: bytes
    hmac: Optional[bytes] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @staticmethod
    def has_required_fields(data: Any) -> bool:
        """True if `data` is a mapping exposing every required field with the right type."""
        if not isinstance(data, Mapping):
            return False
        for name, expected in _REQUIRED_FIELDS.items():
            value = data.get(name)
            if not isinstance(value, expected) or isinstance(value, bool):
                return False
        return True

    @property
    def sealed(self) -> SealedContent:
        return SealedContent(iv=self.iv, auth_tag=self.auth_tag, content=self.content)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "version": self.version,
            "encryptedKey": _b64encode(self.encrypted_key),
            "iv": _b64encode(self.iv),
            "authTag": _b64encode(self.auth_tag),
            "content": _b64encode(self.content),
        }
        if self.hmac is not None:
            data["hmac"] = _b64encode(self.hmac)
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: Any) -> "EncryptedEnvelope":
        """
        Build an envelope from parsed JSON.

        Raises:
            MalformedEnvelopeError: If a required field is missing, mistyped
                or not base64, or the version is not a positive integer
        """
        if not cls.has_required_fields(data):
            raise MalformedEnvelopeError("Missing or invalid envelope fields")

        version = data["version"]
        if version < 1:
            raise MalformedEnvelopeError(f"Invalid envelope version: {version}")

        mac = data.get("hmac")
        if mac is not None and not isinstance(mac, str):
            raise MalformedEnvelopeError("Field 'hmac' must be a string")

        return cls(
            version=version,
            encrypted_key=_b64decode(data["encryptedKey"], "encryptedKey"),
            iv=_b64decode(data["iv"], "iv"),
            auth_tag=_b64decode(data["authTag"], "authTag"),
            content=_b64decode(data["content"], "content"),
            hmac=_b64decode(mac, "hmac") if mac is not None else None,
            extra={k: v for k, v in data.items() if k not in _KNOWN_FIELDS},
        )

    @classmethod
    def from_json(cls, text: str | bytes) -> "EncryptedEnvelope":
        try:
            data = json.loads(text)
        except (ValueError, RecursionError) as e:
            raise MalformedEnvelopeError("Envelope is not valid JSON") from e
        return cls.from_dict(data)

    @classmethod
    def read(cls, path: Path | str) -> "EncryptedEnvelope":
        """Read and parse an envelope file."""
        return cls.from_json(Path(path).read_bytes())

    def write(self, path: Path | str) -> None:
        """Atomically write the envelope with owner-only permissions."""
        atomic_write(path, self.to_json().encode("utf-8"), PRIVATE_FILE_MODE)

    def __repr__(self) -> str:
        """Safe representation."""
        return (
            f"EncryptedEnvelope(v{self.version}, "
            f"content_len={len(self.content)}, "
            f"hmac={'yes' if self.hmac is not None else 'no'})"
        )


class HybridCryptoEngine:
    """
    Stateful hybrid encryption engine bound to a Session.

    Usage:
        paths = HybridCryptoEngine.generate_key_pair(key_dir, passphrase="...")

        engine = HybridCryptoEngine(
            public_key_path=paths.public_key_path,
            private_key_path=paths.private_key_path,
            passphrase_provider=lambda: getpass.getpass("Passphrase: "),
        )
        engine.unlock()

        envelope = engine.encrypt(b"hello")
        assert engine.decrypt(envelope) == b"hello"

        engine.lock()

    Security Notes:
        - A fresh file key and nonce for every call
        - Private key held only as a decrypted key object inside the Session
        - Every successful operation refreshes the session timeout
    """

    __slots__ = ("_session", "_public_key_path", "_private_key_path", "_passphrase_provider", "_aes", "_log")

    def __init__(
        self,
        session: Optional[Session] = None,
        public_key_path: Optional[Path | str] = None,
        private_key_path: Optional[Path | str] = None,
        passphrase_provider: Optional[PassphraseProvider] = None,
        config: Optional[EncryptionConfig] = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            session: Shared session; created from `config` if omitted
            public_key_path: Overrides config.public_key_path
            private_key_path: Overrides config.private_key_path
            passphrase_provider: Prompt called by unlock() when the private
                key is passphrase-protected; returns None if cancelled
            config: Encryption configuration (defaults when omitted)
        """
        config = config or EncryptionConfig()
        self._session = session or Session(config.session_timeout_seconds)
        pub = public_key_path or config.public_key_path
        priv = private_key_path or config.private_key_path
        self._public_key_path = Path(pub) if pub else None
        self._private_key_path = Path(priv) if priv else None
        self._passphrase_provider = passphrase_provider
        self._aes = AesGcmCipher()
        self._log = logging.getLogger("securenotes.crypto")

    @property
    def session(self) -> Session:
        return self._session

    @property
    def is_unlocked(self) -> bool:
        return self._session.is_unlocked

    @property
    def public_key_path(self) -> Optional[Path]:
        return self._public_key_path

    @property
    def private_key_path(self) -> Optional[Path]:
        return self._private_key_path

    # ------------------------------------------------------------------
    # Key management
    # ------------------------------------------------------------------

    @staticmethod
    def generate_key_pair(
        output_dir: Path | str,
        passphrase: Optional[str] = None,
    ) -> rsa_keys.KeyPairPaths:
        """Generate an RSA-4096 key pair into `output_dir`."""
        return rsa_keys.generate_key_pair(output_dir, passphrase)

    def load_public_key(self) -> None:
        """
        Load the public key from the configured location.

        Raises:
            EncryptionNotConfiguredError: If no path is configured
            KeyNotFoundError: If the file is missing
        """
        if self._public_key_path is None:
            raise EncryptionNotConfiguredError("Public key path not configured")

        self._session.install_public_key(rsa_keys.load_public_key(self._public_key_path))
        self._log.info("Public key loaded from %s", self._public_key_path)

    def load_private_key(self, passphrase: Optional[str] = None) -> None:
        """
        Load and decrypt the private key; the session becomes unlocked.

        Raises:
            EncryptionNotConfiguredError: If no path is configured
            KeyNotFoundError: If the file is missing
            InsecureKeyPermissionsError: If the file is not owner-only
            PassphraseRequiredError / InvalidPassphraseError: On passphrase problems
        """
        if self._private_key_path is None:
            raise EncryptionNotConfiguredError("Private key path not configured")

        key = rsa_keys.load_private_key(self._private_key_path, passphrase)
        self._session.install_private_key(key)
        self._log.info("Private key loaded and decrypted")

    def unlock(self, passphrase_provider: Optional[PassphraseProvider] = None) -> bool:
        """
        Load both keys, prompting once for a passphrase if needed.

        Returns:
            True if the session is unlocked, False if the prompt was cancelled

        Raises:
            ConfigurationError: Keys not configured, missing or insecure
            AuthenticationError: Passphrase wrong, or needed with no way to ask
        """
        provider = passphrase_provider or self._passphrase_provider

        self.load_public_key()

        try:
            self.load_private_key()
        except AuthenticationError:
            if provider is None:
                raise

            passphrase = provider()
            if not passphrase:
                self._log.info("Unlock cancelled by user")
                return False

            self.load_private_key(passphrase)

        self._log.info("Encryption unlocked")
        return True

    def lock(self) -> None:
        """Clear keys from memory. Waits for in-flight operations."""
        self._session.lock()

    # ------------------------------------------------------------------
    # Buffers
    # ------------------------------------------------------------------

    def encrypt(self, plaintext: bytes) -> EncryptedEnvelope:
        """
        Encrypt a buffer into a new envelope.

        Raises:
            NotUnlockedError: If no public key is loaded
            EncryptionFailedError: If a primitive fails
        """
        with self._session.using_public_key() as public_key:
            file_key = new_file_key()
            with wiped(file_key):
                try:
                    sealed = self._aes.seal(bytes(file_key), bytes(plaintext))
                    wrapped_key = public_key.encrypt(bytes(file_key), _oaep())
                    mac = content_mac(bytes(file_key), sealed.content)
                except (ValueError, TypeError) as e:
                    self._log.error("Encryption failed: %s", type(e).__name__)
                    raise EncryptionFailedError(f"Encryption failed: {e}") from e

        self._session.record_activity()

        return EncryptedEnvelope(
            version=ENVELOPE_VERSION,
            encrypted_key=wrapped_key,
            iv=sealed.iv,
            auth_tag=sealed.auth_tag,
            content=sealed.content,
            hmac=mac,
        )

    def decrypt(self, envelope: EncryptedEnvelope) -> bytes:
        """
        Decrypt an envelope.

        Raises:
            NotUnlockedError: If the session is locked
            IntegrityCheckFailedError: If the HMAC does not match (tampering)
            DecryptionFailedError: If unwrapping or the cipher tag fails
        """
        with self._session.using_private_key() as private_key:
            try:
                file_key = bytearray(private_key.decrypt(envelope.encrypted_key, _oaep()))
            except ValueError as e:
                self._log.error("Failed to unwrap file key")
                raise DecryptionFailedError("Failed to unwrap file key") from e

            with wiped(file_key):
                if len(file_key) != AES_KEY_SIZE:
                    raise DecryptionFailedError("Unwrapped file key has wrong length")

                if envelope.hmac is not None:
                    if not content_mac_matches(bytes(file_key), envelope.content, envelope.hmac):
                        self._log.warning("HMAC mismatch - envelope may have been tampered with")
                        raise IntegrityCheckFailedError()

                try:
                    plaintext = self._aes.open(bytes(file_key), envelope.sealed)
                except InvalidTag as e:
                    self._log.error("Authentication tag mismatch")
                    raise DecryptionFailedError("Authentication tag mismatch") from e
                except ValueError as e:
                    raise DecryptionFailedError(f"Decryption failed: {e}") from e

        self._session.record_activity()
        return plaintext

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def encrypt_to_file(self, plaintext: bytes, dest: Path | str) -> EncryptedEnvelope:
        """Encrypt a buffer and atomically write the envelope to `dest` (mode 0600)."""
        envelope = self.encrypt(plaintext)
        envelope.write(dest)
        self._log.debug("Wrote envelope to %s", dest)
        return envelope

    def encrypt_file(self, source: Path | str, dest: Path | str) -> EncryptedEnvelope:
        """Encrypt the file at `source` into an envelope at `dest`."""
        return self.encrypt_to_file(Path(source).read_bytes(), dest)

    def decrypt_file(self, path: Path | str) -> bytes:
        """
        Read and decrypt an envelope file.

        Raises:
            OSError: If the file cannot be read
            MalformedEnvelopeError: If the file is not an envelope
            IntegrityCheckFailedError: If the file was tampered with
        """
        envelope = EncryptedEnvelope.read(path)
        try:
            return self.decrypt(envelope)
        except IntegrityCheckFailedError as e:
            raise IntegrityCheckFailedError(path) from e

    def create_encrypted_file(self, path: Path | str, content: bytes = b"") -> EncryptedEnvelope:
        """
        Create a new envelope file; never overwrites.

        Raises:
            InvalidFileNameError: If the file name is empty, has separators,
                traversal sequences or NUL
            FileAlreadyExistsError: If `path` exists
        """
        path = Path(path)
        problem = validate_file_name(path.name)
        if problem is not None:
            raise InvalidFileNameError(path.name, problem)
        if path.exists():
            raise FileAlreadyExistsError(path)
        envelope = self.encrypt_to_file(content, path)
        self._log.info("Created new encrypted file %s", path)
        return envelope

    @staticmethod
    def is_encrypted_file(path: Path | str, suffix: str = ENCRYPTED_SUFFIX) -> bool:
        """
        Format sniff: suffix matches and contents parse into an envelope
        with every required field. Never raises.
        """
        try:
            path = Path(path)
            if not path.name.endswith(suffix):
                return False
            data = json.loads(path.read_bytes())
        except (OSError, ValueError, TypeError, RecursionError):
            return False
        return EncryptedEnvelope.has_required_fields(data)
