"""Shared fixtures: key pairs, sessions, scratch storage and a fake editor."""

from __future__ import annotations

import platform
from pathlib import Path
from typing import Callable, Optional

import pytest

from securenotes.core.auth.session_control import Session
from securenotes.core.crypto.hybrid_engine import HybridCryptoEngine
from securenotes.core.crypto.rsa_keys import KeyPairPaths, generate_key_pair
from securenotes.core.file_ops.editing_surface import EditingSurface, WatchHandle
from securenotes.core.storage.secure_temp import SecureTempStorage, StorageProfile

PASSPHRASE = "correct horse battery staple"

posix_only = pytest.mark.skipif(
    platform.system().lower() == "windows",
    reason="POSIX permission bits",
)


@pytest.fixture(scope="session")
def key_pair(tmp_path_factory) -> KeyPairPaths:
    """Unprotected RSA-4096 key pair, generated once per run."""
    return generate_key_pair(tmp_path_factory.mktemp("keys"))


@pytest.fixture(scope="session")
def protected_key_pair(tmp_path_factory) -> KeyPairPaths:
    """Passphrase-protected key pair. Smaller modulus keeps the run fast."""
    return generate_key_pair(
        tmp_path_factory.mktemp("protected-keys"),
        passphrase=PASSPHRASE,
        key_size=2048,
    )


@pytest.fixture
def session():
    s = Session(timeout_seconds=None)
    yield s
    s.lock()


@pytest.fixture
def engine(key_pair: KeyPairPaths, session: Session) -> HybridCryptoEngine:
    e = HybridCryptoEngine(
        session,
        public_key_path=key_pair.public_key_path,
        private_key_path=key_pair.private_key_path,
    )
    assert e.unlock()
    return e


@pytest.fixture
def storage(tmp_path: Path):
    s = SecureTempStorage(StorageProfile.linux_shm(tmp_path / "shm"), overwrite_passes=1)
    yield s
    s.dispose()


class FakeWatch(WatchHandle):
    def __init__(self) -> None:
        self.disposed = False

    def dispose(self) -> None:
        self.disposed = True


class FakeSurface(EditingSurface):
    """
    In-memory stand-in for an editor.

    `edit()` writes to disk and fires the watch like a real file watcher;
    `type_unsaved()` keeps content in the "buffer" until save() is called.
    """

    def __init__(self) -> None:
        self.shown: list[Path] = []
        self.closed: list[Path] = []
        self.saved: list[Path] = []
        self.errors: list[str] = []
        self.warnings: list[str] = []
        self.watches: dict[Path, tuple[Callable[[Path], None], FakeWatch]] = {}
        self.buffers: dict[Path, bytes] = {}

    async def show(self, path: Path) -> None:
        self.shown.append(path)

    async def close(self, path: Path) -> None:
        self.closed.append(path)

    async def save(self, path: Path) -> None:
        self.saved.append(path)
        content = self.buffers.pop(path, None)
        if content is not None:
            path.write_bytes(content)

    def is_dirty(self, path: Path) -> bool:
        return path in self.buffers

    def watch(self, path: Path, on_change: Callable[[Path], None]) -> WatchHandle:
        handle = FakeWatch()
        self.watches[path] = (on_change, handle)
        return handle

    def show_error(self, message: str) -> None:
        self.errors.append(message)

    def show_warning(self, message: str) -> None:
        self.warnings.append(message)

    def edit(self, path: Path, content: bytes) -> None:
        path.write_bytes(content)
        entry = self.watches.get(path)
        if entry is not None and not entry[1].disposed:
            entry[0](path)

    def type_unsaved(self, path: Path, content: bytes) -> None:
        self.buffers[path] = content

    def watch_for(self, path: Path) -> Optional[FakeWatch]:
        entry = self.watches.get(path)
        return entry[1] if entry else None


@pytest.fixture
def surface() -> FakeSurface:
    return FakeSurface()


@pytest.fixture
def make_note(engine: HybridCryptoEngine, tmp_path: Path):
    """Write an encrypted note under tmp_path/notes and return its path."""
    notes = tmp_path / "notes"
    notes.mkdir(exist_ok=True)

    def _make(name: str, content: bytes) -> Path:
        path = notes / name
        engine.encrypt_to_file(content, path)
        return path

    return _make
