"""
Editing Surface
===============

Boundary to whatever actually shows and edits a plaintext working copy.

The lifecycle manager never edits files itself. It asks the surface to
show, save and close a path, asks whether a path has unsaved edits, and
subscribes to on-disk changes through `watch()`. Saved/closed events from
the host are delivered by calling TempFileManager.notify_saved() and
TempFileManager.close() directly.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional, Sequence

ChangeCallback = Callable[[Path], None]

_log = logging.getLogger("securenotes.tempfiles")


class WatchHandle(ABC):
    """Subscription returned by EditingSurface.watch()."""

    @abstractmethod
    def dispose(self) -> None:
        """Stop delivering change notifications. Idempotent."""


class EditingSurface(ABC):
    """Host editor as seen by the lifecycle manager."""

    @abstractmethod
    async def show(self, path: Path) -> None:
        """Materialize `path` for interactive editing."""

    @abstractmethod
    async def close(self, path: Path) -> None:
        """Close every view of `path`. No-op if none is open."""

    @abstractmethod
    async def save(self, path: Path) -> None:
        """Write unsaved edits of `path` to disk."""

    @abstractmethod
    def is_dirty(self, path: Path) -> bool:
        """True if the surface holds edits of `path` not yet on disk."""

    @abstractmethod
    def watch(self, path: Path, on_change: ChangeCallback) -> WatchHandle:
        """Call `on_change(path)` on the event loop whenever `path` changes on disk."""

    def show_error(self, message: str) -> None:
        _log.error(message)

    def show_warning(self, message: str) -> None:
        _log.warning(message)


class PollingWatch(WatchHandle):
    """
    Watches one file by polling its modification time.

    Must be created from a running event loop.
    """

    __slots__ = ("_path", "_on_change", "_interval", "_task", "_last")

    def __init__(self, path: Path, on_change: ChangeCallback, interval: float = 0.5) -> None:
        self._path = path
        self._on_change = on_change
        self._interval = interval
        self._last = self._stamp()
        self._task: Optional[asyncio.Task] = asyncio.get_running_loop().create_task(
            self._poll(),
            name=f"watch-{path.name}",
        )

    def _stamp(self) -> Optional[tuple[int, int]]:
        try:
            st = self._path.stat()
        except FileNotFoundError:
            return None
        return (st.st_mtime_ns, st.st_size)

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            stamp = self._stamp()
            if stamp is not None and stamp != self._last:
                self._last = stamp
                self._on_change(self._path)

    def dispose(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None


class ExternalEditorSurface(EditingSurface):
    """
    Runs an external editor process on the working copy.

    show() returns when the editor exits. The editor writes straight to
    disk, so nothing is ever dirty inside the surface itself.

    Usage:
        surface = ExternalEditorSurface.from_environment()
    """

    def __init__(self, command: Sequence[str], poll_interval: float = 0.5) -> None:
        if not command:
            raise ValueError("Editor command cannot be empty")
        self._command = list(command)
        self._poll_interval = poll_interval

    @classmethod
    def from_environment(cls, default: str = "vi") -> "ExternalEditorSurface":
        """Editor from $VISUAL or $EDITOR."""
        editor = os.environ.get("VISUAL") or os.environ.get("EDITOR") or default
        return cls(shlex.split(editor))

    async def show(self, path: Path) -> None:
        _log.debug("Launching editor %s", self._command[0])
        proc = await asyncio.create_subprocess_exec(*self._command, str(path))
        returncode = await proc.wait()
        if returncode != 0:
            self.show_warning(f"Editor exited with status {returncode}")

    async def close(self, path: Path) -> None:
        return None

    async def save(self, path: Path) -> None:
        return None

    def is_dirty(self, path: Path) -> bool:
        return False

    def watch(self, path: Path, on_change: ChangeCallback) -> WatchHandle:
        return PollingWatch(path, on_change, self._poll_interval)
