"""Tests for the hybrid encryption engine and the envelope format."""

from __future__ import annotations

import dataclasses
import json
import os
import shutil
from pathlib import Path

import pytest

from conftest import PASSPHRASE, posix_only
from securenotes.core.auth.session_control import Session
from securenotes.core.crypto.aes_gcm import AES_NONCE_SIZE, AES_TAG_SIZE
from securenotes.core.crypto.hybrid_engine import (
    ENVELOPE_VERSION,
    EncryptedEnvelope,
    HybridCryptoEngine,
)
from securenotes.core.crypto.rsa_keys import RSA_KEY_SIZE, load_private_key
from securenotes.core.errors import (
    DecryptionFailedError,
    EncryptionNotConfiguredError,
    FileAlreadyExistsError,
    InsecureKeyPermissionsError,
    IntegrityCheckFailedError,
    InvalidFileNameError,
    InvalidPassphraseError,
    KeyNotFoundError,
    MalformedEnvelopeError,
    NotUnlockedError,
    PassphraseRequiredError,
)


def _flip(data: bytes, index: int = 0) -> bytes:
    return data[:index] + bytes([data[index] ^ 0x01]) + data[index + 1:]


@pytest.mark.parametrize(
    "plaintext",
    [b"", b"hello", bytes(range(256)) * 4, os.urandom(1024 * 1024)],
    ids=["empty", "small", "binary", "one-megabyte"],
)
def test_round_trip(engine: HybridCryptoEngine, plaintext: bytes):
    envelope = engine.encrypt(plaintext)
    assert engine.decrypt(envelope) == plaintext


def test_encryption_is_randomized(engine: HybridCryptoEngine):
    """Same plaintext twice gives different wrapped keys, nonces and ciphertexts."""
    a = engine.encrypt(b"same note")
    b = engine.encrypt(b"same note")
    assert a.encrypted_key != b.encrypted_key
    assert a.iv != b.iv
    assert a.content != b.content


def test_envelope_wire_format(engine: HybridCryptoEngine):
    data = json.loads(engine.encrypt(b"hello").to_json())

    assert set(data) == {"version", "encryptedKey", "iv", "authTag", "content", "hmac"}
    assert data["version"] == ENVELOPE_VERSION == 2

    envelope = EncryptedEnvelope.from_dict(data)
    assert len(envelope.iv) == AES_NONCE_SIZE
    assert len(envelope.auth_tag) == AES_TAG_SIZE
    assert len(envelope.hmac) == 32
    assert len(envelope.encrypted_key) == RSA_KEY_SIZE // 8


def test_tampered_content_is_an_integrity_error(engine: HybridCryptoEngine):
    envelope = engine.encrypt(b"do not touch")
    tampered = dataclasses.replace(envelope, content=_flip(envelope.content))

    with pytest.raises(IntegrityCheckFailedError) as exc_info:
        engine.decrypt(tampered)

    assert not isinstance(exc_info.value, DecryptionFailedError)


def test_tampered_hmac_is_an_integrity_error(engine: HybridCryptoEngine):
    envelope = engine.encrypt(b"do not touch")
    tampered = dataclasses.replace(envelope, hmac=_flip(envelope.hmac, 5))

    with pytest.raises(IntegrityCheckFailedError):
        engine.decrypt(tampered)


def test_tampered_auth_tag_is_a_decryption_error(engine: HybridCryptoEngine):
    envelope = engine.encrypt(b"do not touch")
    tampered = dataclasses.replace(envelope, auth_tag=_flip(envelope.auth_tag))

    with pytest.raises(DecryptionFailedError):
        engine.decrypt(tampered)


def test_tampered_wrapped_key_is_a_decryption_error(engine: HybridCryptoEngine):
    envelope = engine.encrypt(b"do not touch")
    tampered = dataclasses.replace(envelope, encrypted_key=_flip(envelope.encrypted_key, 10))

    with pytest.raises(DecryptionFailedError):
        engine.decrypt(tampered)


def test_version_one_envelope_without_hmac_still_decrypts(engine: HybridCryptoEngine):
    envelope = engine.encrypt(b"legacy note")
    data = envelope.to_dict()
    data["version"] = 1
    del data["hmac"]

    legacy = EncryptedEnvelope.from_json(json.dumps(data))

    assert legacy.hmac is None
    assert engine.decrypt(legacy) == b"legacy note"


def test_version_one_tampering_is_still_detected_by_the_cipher(engine: HybridCryptoEngine):
    envelope = engine.encrypt(b"legacy note")
    legacy = dataclasses.replace(envelope, version=1, hmac=None, content=_flip(envelope.content))

    with pytest.raises(DecryptionFailedError):
        engine.decrypt(legacy)


def test_unknown_fields_survive_a_rewrite(engine: HybridCryptoEngine):
    data = engine.encrypt(b"x").to_dict()
    data["compression"] = "none"

    envelope = EncryptedEnvelope.from_dict(data)

    assert envelope.extra == {"compression": "none"}
    assert envelope.to_dict()["compression"] == "none"
    assert engine.decrypt(envelope) == b"x"


@pytest.mark.parametrize(
    "text",
    [
        "not json",
        "[]",
        json.dumps({"version": 2, "iv": "", "authTag": "", "content": ""}),
        json.dumps({"version": "2", "encryptedKey": "", "iv": "", "authTag": "", "content": ""}),
        json.dumps({"version": 0, "encryptedKey": "", "iv": "", "authTag": "", "content": ""}),
        json.dumps({"version": 2, "encryptedKey": "***", "iv": "", "authTag": "", "content": ""}),
    ],
    ids=["garbage", "array", "missing-field", "string-version", "zero-version", "bad-base64"],
)
def test_malformed_envelopes_are_rejected(text: str):
    with pytest.raises(MalformedEnvelopeError):
        EncryptedEnvelope.from_json(text)


def test_decrypt_requires_unlocked_session(engine: HybridCryptoEngine):
    envelope = engine.encrypt(b"secret")
    engine.lock()

    assert not engine.is_unlocked
    with pytest.raises(NotUnlockedError):
        engine.decrypt(envelope)


def test_encrypt_requires_public_key(key_pair):
    engine = HybridCryptoEngine(Session(None), public_key_path=key_pair.public_key_path)

    with pytest.raises(NotUnlockedError):
        engine.encrypt(b"x")

    engine.load_public_key()
    assert isinstance(engine.encrypt(b"x"), EncryptedEnvelope)
    assert not engine.is_unlocked


def test_unlock_without_key_paths_is_not_configured():
    engine = HybridCryptoEngine(Session(None))

    with pytest.raises(EncryptionNotConfiguredError):
        engine.unlock()
    assert not engine.is_unlocked


def test_unlock_with_missing_key_file(tmp_path: Path, key_pair):
    engine = HybridCryptoEngine(
        Session(None),
        public_key_path=key_pair.public_key_path,
        private_key_path=tmp_path / "missing.pem",
    )

    with pytest.raises(KeyNotFoundError) as exc_info:
        engine.unlock()

    assert exc_info.value.key_type == "private"
    assert not engine.is_unlocked


@posix_only
def test_private_key_with_group_access_is_refused(tmp_path: Path, key_pair):
    private = tmp_path / "private.pem"
    shutil.copy(key_pair.private_key_path, private)
    private.chmod(0o640)

    engine = HybridCryptoEngine(
        Session(None),
        public_key_path=key_pair.public_key_path,
        private_key_path=private,
    )

    with pytest.raises(InsecureKeyPermissionsError) as exc_info:
        engine.unlock()

    assert exc_info.value.actual_mode == 0o640
    assert "chmod 600" in exc_info.value.get_user_message()
    assert not engine.is_unlocked


@posix_only
def test_generated_key_file_modes(key_pair):
    assert key_pair.private_key_path.stat().st_mode & 0o777 == 0o600
    assert key_pair.public_key_path.stat().st_mode & 0o777 == 0o644


def test_generated_key_is_rsa_4096(key_pair):
    assert load_private_key(key_pair.private_key_path).key_size == 4096


class TestPassphrase:
    def _engine(self, keys) -> HybridCryptoEngine:
        return HybridCryptoEngine(
            Session(None),
            public_key_path=keys.public_key_path,
            private_key_path=keys.private_key_path,
        )

    def test_correct_passphrase_unlocks(self, protected_key_pair):
        engine = self._engine(protected_key_pair)
        assert engine.unlock(lambda: PASSPHRASE)
        assert engine.is_unlocked
        engine.lock()

    def test_wrong_passphrase(self, protected_key_pair):
        engine = self._engine(protected_key_pair)
        with pytest.raises(InvalidPassphraseError):
            engine.unlock(lambda: "wrong")
        assert not engine.is_unlocked

    def test_no_way_to_ask(self, protected_key_pair):
        engine = self._engine(protected_key_pair)
        with pytest.raises(PassphraseRequiredError):
            engine.unlock()

    def test_cancelled_prompt(self, protected_key_pair):
        engine = self._engine(protected_key_pair)
        assert engine.unlock(lambda: None) is False
        assert not engine.is_unlocked

    def test_relock_then_unlock_with_passphrase(self, protected_key_pair, tmp_path: Path):
        engine = self._engine(protected_key_pair)
        assert engine.unlock(lambda: PASSPHRASE)
        path = tmp_path / "secret.md.enc"
        engine.encrypt_to_file(b"protected note", path)

        engine.lock()
        with pytest.raises(NotUnlockedError):
            engine.decrypt_file(path)

        assert engine.unlock(lambda: PASSPHRASE)
        assert engine.decrypt_file(path) == b"protected note"
        engine.lock()

    def test_unprotected_key_never_prompts(self, key_pair):
        def prompt():
            raise AssertionError("prompted for an unprotected key")

        engine = self._engine(key_pair)
        assert engine.unlock(prompt)
        engine.lock()


def test_encrypt_decrypt_file_lock_and_unlock_again(engine: HybridCryptoEngine, tmp_path: Path):
    source = tmp_path / "hello.txt"
    source.write_bytes(b"hello")
    dest = tmp_path / "hello.txt.enc"

    engine.encrypt_file(source, dest)
    assert engine.decrypt_file(dest) == b"hello"

    engine.lock()
    with pytest.raises(NotUnlockedError):
        engine.decrypt_file(dest)

    assert engine.unlock()
    assert engine.decrypt_file(dest) == b"hello"


@posix_only
def test_envelope_files_are_owner_only(engine: HybridCryptoEngine, tmp_path: Path):
    dest = tmp_path / "note.md.enc"
    engine.encrypt_to_file(b"x", dest)

    assert dest.stat().st_mode & 0o777 == 0o600
    assert [p.name for p in tmp_path.iterdir()] == ["note.md.enc"]


def test_decrypt_file_integrity_error_names_the_file(engine: HybridCryptoEngine, tmp_path: Path):
    dest = tmp_path / "note.md.enc"
    envelope = engine.encrypt_to_file(b"x", dest)
    dataclasses.replace(envelope, content=_flip(envelope.content)).write(dest)

    with pytest.raises(IntegrityCheckFailedError) as exc_info:
        engine.decrypt_file(dest)

    assert exc_info.value.file_path == dest


def test_create_encrypted_file_never_overwrites(engine: HybridCryptoEngine, tmp_path: Path):
    path = tmp_path / "new.md.enc"
    engine.create_encrypted_file(path)
    assert engine.decrypt_file(path) == b""

    with pytest.raises(FileAlreadyExistsError):
        engine.create_encrypted_file(path, b"other")
    assert engine.decrypt_file(path) == b""


@pytest.mark.parametrize("name", ["..note.md.enc", "bad\x00name.enc"])
def test_create_encrypted_file_rejects_bad_names(engine: HybridCryptoEngine, tmp_path: Path, name: str):
    with pytest.raises(InvalidFileNameError):
        engine.create_encrypted_file(tmp_path / name)
    assert list(tmp_path.iterdir()) == []


def test_deeply_nested_json_is_malformed(engine: HybridCryptoEngine, tmp_path: Path):
    path = tmp_path / "deep.enc"
    path.write_text("[" * 200_000 + "]" * 200_000)

    assert not HybridCryptoEngine.is_encrypted_file(path)
    with pytest.raises(MalformedEnvelopeError):
        engine.decrypt_file(path)


class TestIsEncryptedFile:
    def test_real_envelope(self, engine: HybridCryptoEngine, tmp_path: Path):
        path = tmp_path / "a.md.enc"
        engine.encrypt_to_file(b"x", path)
        assert HybridCryptoEngine.is_encrypted_file(path)

    def test_wrong_suffix(self, engine: HybridCryptoEngine, tmp_path: Path):
        path = tmp_path / "a.md"
        engine.encrypt_to_file(b"x", path)
        assert not HybridCryptoEngine.is_encrypted_file(path)

    def test_garbage(self, tmp_path: Path):
        path = tmp_path / "a.enc"
        path.write_bytes(b"\xff\xfe not json")
        assert not HybridCryptoEngine.is_encrypted_file(path)

    def test_missing_field(self, tmp_path: Path):
        path = tmp_path / "a.enc"
        path.write_text(json.dumps({"version": 2, "iv": "", "authTag": "", "content": ""}))
        assert not HybridCryptoEngine.is_encrypted_file(path)

    def test_missing_file_and_directory(self, tmp_path: Path):
        assert not HybridCryptoEngine.is_encrypted_file(tmp_path / "nope.enc")
        folder = tmp_path / "folder.enc"
        folder.mkdir()
        assert not HybridCryptoEngine.is_encrypted_file(folder)


def test_successful_operations_refresh_activity(engine: HybridCryptoEngine):
    session = engine.session
    before = session.state.last_activity
    engine.decrypt(engine.encrypt(b"x"))
    assert session.state.last_activity >= before
