"""Tests for path containment, name validation and file write helpers."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from conftest import posix_only
from securenotes.core.errors import PathSecurityError
from securenotes.utils.paths import (
    atomic_write,
    create_secure_directory,
    sanitize_filename,
    write_file_with_mode,
)
from securenotes.utils.validators import (
    ensure_within_directory,
    is_path_within_directory,
    validate_file_name,
)


class TestContainment:
    def test_child_paths(self, tmp_path: Path):
        (tmp_path / "exists.txt").touch()
        assert is_path_within_directory(tmp_path / "exists.txt", tmp_path)
        assert is_path_within_directory(tmp_path / "new" / "deep.txt", tmp_path)

    def test_directory_itself_is_not_within(self, tmp_path: Path):
        assert not is_path_within_directory(tmp_path, tmp_path)

    def test_traversal_and_siblings(self, tmp_path: Path):
        base = tmp_path / "base"
        base.mkdir()
        assert not is_path_within_directory(base / ".." / "x", base)
        assert not is_path_within_directory(tmp_path / "base-evil" / "x", base)

    def test_missing_directory(self, tmp_path: Path):
        assert not is_path_within_directory(tmp_path / "a", tmp_path / "missing")

    @posix_only
    def test_symlinked_parent(self, tmp_path: Path):
        base = tmp_path / "base"
        outside = tmp_path / "outside"
        base.mkdir()
        outside.mkdir()
        (base / "link").symlink_to(outside, target_is_directory=True)

        assert not is_path_within_directory(base / "link" / "new.txt", base)

    @posix_only
    def test_dangling_symlink_resolves_to_its_target(self, tmp_path: Path):
        base = tmp_path / "base"
        base.mkdir()
        (base / "dangling").symlink_to(tmp_path / "not-yet.txt")
        (base / "dangling-inside").symlink_to(base / "later.txt")

        assert not is_path_within_directory(base / "dangling", base)
        assert is_path_within_directory(base / "dangling-inside", base)

    def test_ensure_returns_resolved_path(self, tmp_path: Path):
        result = ensure_within_directory(tmp_path / "sub" / ".." / "a.txt", tmp_path)
        assert result == tmp_path.resolve() / "a.txt"

    def test_ensure_raises_with_context(self, tmp_path: Path):
        with pytest.raises(PathSecurityError) as exc_info:
            ensure_within_directory("/etc/passwd", tmp_path, "read")

        error = exc_info.value
        assert "Cannot read outside" in str(error)
        assert error.target_path == Path("/etc/passwd")
        assert error.base_dir == tmp_path


@pytest.mark.parametrize(
    "name,valid",
    [
        ("notes.md", True),
        ("my note (1).txt", True),
        ("", False),
        ("   ", False),
        ("a/b", False),
        ("a\\b", False),
        ("..", False),
        (".", False),
        ("x..y", False),
        ("bad\x00name", False),
    ],
)
def test_validate_file_name(name: str, valid: bool):
    assert (validate_file_name(name) is None) is valid


def test_sanitize_filename():
    assert sanitize_filename('a<b>c:"d"|e?.md') == "a_b_c__d__e_.md"
    assert sanitize_filename("  .hidden.  ") == "hidden"
    assert len(sanitize_filename("x" * 500)) == 200
    with pytest.raises(ValueError):
        sanitize_filename("...")


@posix_only
def test_create_secure_directory_mode(tmp_path: Path):
    path = create_secure_directory(tmp_path / "a" / "b")
    assert path.stat().st_mode & 0o777 == 0o700


def test_atomic_write_replaces_contents(tmp_path: Path):
    path = tmp_path / "file.enc"
    path.write_bytes(b"old")

    atomic_write(path, b"new")

    assert path.read_bytes() == b"new"
    assert os.listdir(tmp_path) == ["file.enc"]
    if os.name == "posix":
        assert path.stat().st_mode & 0o777 == 0o600


@posix_only
def test_write_refuses_symlink_in_final_component(tmp_path: Path):
    target = tmp_path / "target.txt"
    link = tmp_path / "link.txt"
    link.symlink_to(target)

    with pytest.raises(OSError):
        write_file_with_mode(link, b"secret")
    assert not target.exists()


@posix_only
def test_write_resets_mode_of_existing_file(tmp_path: Path):
    path = tmp_path / "a.txt"
    path.write_bytes(b"old")
    path.chmod(0o644)

    write_file_with_mode(path, b"new")

    assert path.read_bytes() == b"new"
    assert path.stat().st_mode & 0o777 == 0o600
