"""Tests for per-file content sealing and buffer wiping."""

from __future__ import annotations

import secrets

import pytest
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from securenotes.core.crypto.aes_gcm import (
    AES_KEY_SIZE,
    AES_NONCE_SIZE,
    AesGcmCipher,
    SealedContent,
    content_mac,
    content_mac_matches,
    new_file_key,
)
from securenotes.core.memory.zeroization import passphrase_bytes, secure_zero, wiped


def test_seal_and_open():
    key = bytes(new_file_key())
    sealed = AesGcmCipher().seal(key, b"note body")

    assert len(sealed.iv) == AES_NONCE_SIZE
    assert AesGcmCipher().open(key, sealed) == b"note body"


def test_open_with_wrong_key_fails():
    sealed = AesGcmCipher().seal(bytes(new_file_key()), b"note body")
    with pytest.raises(InvalidTag):
        AesGcmCipher().open(bytes(new_file_key()), sealed)


def test_legacy_sixteen_byte_iv_is_readable():
    key = secrets.token_bytes(AES_KEY_SIZE)
    iv = secrets.token_bytes(16)
    sealed = AESGCM(key).encrypt(iv, b"old note", None)
    legacy = SealedContent(iv=iv, auth_tag=sealed[-16:], content=sealed[:-16])

    assert AesGcmCipher().open(key, legacy) == b"old note"


@pytest.mark.parametrize("size", [0, 16, 31, 33])
def test_wrong_key_size_is_rejected(size: int):
    with pytest.raises(ValueError):
        AesGcmCipher().seal(bytes(size), b"x")


def test_content_mac():
    key = bytes(new_file_key())
    mac = content_mac(key, b"ciphertext")

    assert len(mac) == 32
    assert content_mac_matches(key, b"ciphertext", mac)
    assert not content_mac_matches(key, b"ciphertexT", mac)


def test_wiped_zeroes_on_error():
    key = new_file_key()
    with pytest.raises(RuntimeError):
        with wiped(key):
            raise RuntimeError("boom")
    assert key == bytearray(AES_KEY_SIZE)


def test_passphrase_bytes():
    with passphrase_bytes("pässword") as secret:
        assert bytes(secret) == "pässword".encode("utf-8")
        held = secret
    assert held == bytearray(len(held))

    with passphrase_bytes(None) as nothing:
        assert nothing is None


def test_secure_zero_empty_buffer():
    buf = bytearray()
    secure_zero(buf)
    assert buf == bytearray()
