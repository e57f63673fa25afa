"""Tests for overwrite-then-delete erasure."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import posix_only
from securenotes.core.errors import SecureDeleteError
from securenotes.core.file_ops.secure_delete import secure_delete, secure_delete_directory


def test_secure_delete_removes_file(tmp_path: Path):
    path = tmp_path / "plain.txt"
    path.write_bytes(b"secret" * 2000)

    assert secure_delete(path) is True
    assert not path.exists()


def test_secure_delete_empty_file(tmp_path: Path):
    path = tmp_path / "empty.txt"
    path.touch()

    assert secure_delete(path, passes=1) is True
    assert not path.exists()


def test_secure_delete_missing_file(tmp_path: Path):
    assert secure_delete(tmp_path / "missing.txt") is False


def test_secure_delete_refuses_directories(tmp_path: Path):
    with pytest.raises(SecureDeleteError):
        secure_delete(tmp_path)


@posix_only
def test_secure_delete_refuses_symlinks(tmp_path: Path):
    target = tmp_path / "target.txt"
    target.write_bytes(b"keep me")
    link = tmp_path / "link.txt"
    link.symlink_to(target)

    with pytest.raises(SecureDeleteError):
        secure_delete(link)
    assert target.read_bytes() == b"keep me"


def test_secure_delete_directory(tmp_path: Path):
    root = tmp_path / "session"
    (root / "nested").mkdir(parents=True)
    (root / "a.txt").write_bytes(b"a")
    (root / "nested" / "b.txt").write_bytes(b"b")

    assert secure_delete_directory(root, passes=1) == 2
    assert not root.exists()
    assert secure_delete_directory(root) == 0
