"""
Per-File Content Sealing
========================

AES-256-GCM for note bodies plus the HMAC-SHA256 content MAC that
version 2 envelopes carry next to the GCM tag.

Every file gets a fresh random key; the key never encrypts a second
plaintext, so a random 96-bit IV per seal is sufficient.

The envelope stores the tag apart from the ciphertext. `seal` splits the
tag off the AESGCM output and `open` joins it back on.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Final

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

AES_KEY_SIZE: Final[int] = 32  # 256 bits
AES_NONCE_SIZE: Final[int] = 12  # 96 bits
AES_TAG_SIZE: Final[int] = 16  # 128 bits
CONTENT_MAC_SIZE: Final[int] = 32  # HMAC-SHA256

# Envelopes written by early releases used 128-bit IVs
READABLE_NONCE_SIZES: Final[frozenset[int]] = frozenset({AES_NONCE_SIZE, 16})


def new_file_key() -> bytearray:
    """Fresh random file key in a wipeable buffer."""
    return bytearray(secrets.token_bytes(AES_KEY_SIZE))


def content_mac(key: bytes, content: bytes) -> bytes:
    """HMAC-SHA256 of the ciphertext under the file key."""
    return hmac.new(key, content, hashlib.sha256).digest()


def content_mac_matches(key: bytes, content: bytes, mac: bytes) -> bool:
    return hmac.compare_digest(content_mac(key, content), mac)


@dataclass(frozen=True, slots=True)
class SealedContent:
    """Ciphertext of one note body, as laid out in the envelope."""

    iv: bytes
    auth_tag: bytes
    content: bytes

    def __repr__(self) -> str:
        return f"SealedContent(iv_len={len(self.iv)}, content_len={len(self.content)})"


class AesGcmCipher:
    """
    Seals and opens note bodies with a caller-supplied file key.

    Usage:
        key = new_file_key()
        sealed = AesGcmCipher().seal(bytes(key), b"note")
        AesGcmCipher().open(bytes(key), sealed)
    """

    __slots__ = ()

    @staticmethod
    def _check_key(key: bytes) -> None:
        if len(key) != AES_KEY_SIZE:
            raise ValueError(f"File key must be {AES_KEY_SIZE} bytes, got {len(key)}")

    def seal(self, key: bytes, plaintext: bytes) -> SealedContent:
        """
        Encrypt a note body under a fresh IV.

        Raises:
            ValueError: If the key has the wrong size
        """
        self._check_key(key)
        iv = secrets.token_bytes(AES_NONCE_SIZE)
        sealed = AESGCM(key).encrypt(iv, plaintext, None)
        return SealedContent(
            iv=iv,
            auth_tag=sealed[-AES_TAG_SIZE:],
            content=sealed[:-AES_TAG_SIZE],
        )

    def open(self, key: bytes, sealed: SealedContent) -> bytes:
        """
        Decrypt and authenticate a note body.

        Raises:
            ValueError: If key, IV or tag sizes are wrong
            cryptography.exceptions.InvalidTag: If the tag does not verify
        """
        self._check_key(key)
        if len(sealed.iv) not in READABLE_NONCE_SIZES:
            raise ValueError(f"Unsupported IV length: {len(sealed.iv)}")
        if len(sealed.auth_tag) != AES_TAG_SIZE:
            raise ValueError(f"Authentication tag must be {AES_TAG_SIZE} bytes")

        return AESGCM(key).decrypt(sealed.iv, sealed.content + sealed.auth_tag, None)
