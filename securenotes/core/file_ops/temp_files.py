"""
Plaintext Lifecycle Manager
===========================

Lets a generic editor work on a decrypted copy of an encrypted note.

Guarantees:
    - At most one plaintext copy per encrypted file at any time
    - No edit is lost to a cleanup race: erasure of a working copy always
      follows the last successful re-encryption of it
    - The working copy is erased on every exit path (close, move, delete,
      lock, dispose)

Per-record state machine:
    Idle --(change)--> Scheduled --(debounce fires | save)--> Encrypting
    Encrypting --(done, clean)--> Idle
    Encrypting --(done, dirtied meanwhile)--> Encrypting

All public coroutines and notify_* methods run on one asyncio event loop.
Blocking crypto and file I/O is pushed to worker threads with
asyncio.to_thread(); the loop itself only moves records between states.

Failure semantics:
    - Decryption failure on open is reported and re-raised; no record is
      created and no plaintext is left behind
    - Re-encryption failure is reported; the record and its plaintext are
      kept so the user can retry
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional

from securenotes.core.crypto.hybrid_engine import ENCRYPTED_SUFFIX, HybridCryptoEngine
from securenotes.core.errors import (
    AuthenticationError,
    ConfigurationError,
    SecureNotesError,
    TempFileCreateFailedError,
)
from securenotes.core.file_ops.editing_surface import EditingSurface, WatchHandle

if TYPE_CHECKING:
    from securenotes.core.storage.secure_temp import SecureTempStorage


DEFAULT_DEBOUNCE_SECONDS = 0.1

PassphraseProvider = Callable[[], Optional[str]]


class RecordState(Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    ENCRYPTING = "encrypting"


@dataclass(eq=False, slots=True)
class TempFileRecord:
    """
    Binding between one encrypted file and its one plaintext copy.

    Attributes:
        temporary_path: Working copy inside the session storage directory
        encrypted_path: Envelope the working copy is re-encrypted into
        last_modified: time.time() of the last successful re-encryption
        watch_handle: Change subscription on temporary_path
        dirty: Plaintext changed since the last re-encryption started
        last_error: Failure of the most recent re-encryption, if any
    """

    temporary_path: Path
    encrypted_path: Path
    last_modified: float
    watch_handle: Optional[WatchHandle] = None
    dirty: bool = False
    last_error: Optional[BaseException] = None
    debounce_handle: Optional[asyncio.TimerHandle] = field(default=None, repr=False)
    task: Optional[asyncio.Task] = field(default=None, repr=False)
    closing: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def state(self) -> RecordState:
        if self.task is not None and not self.task.done():
            return RecordState.ENCRYPTING
        if self.debounce_handle is not None:
            return RecordState.SCHEDULED
        return RecordState.IDLE

    @property
    def has_pending_changes(self) -> bool:
        return self.dirty or self.state is not RecordState.IDLE


def _key(path: Path | str) -> Path:
    return Path(os.path.abspath(path))


def _user_message(error: BaseException) -> str:
    if isinstance(error, SecureNotesError):
        return error.get_user_message()
    return str(error)


class TempFileManager:
    """
    Owns every active TempFileRecord.

    Usage:
        manager = TempFileManager(engine, SecureTempStorage(), surface)

        temp_path = await manager.open(Path("notes/todo.md.enc"))
        # surface watch -> manager.notify_changed(temp_path)
        # host save     -> manager.notify_saved(temp_path)
        await manager.close(temp_path)

        await manager.dispose()

    The manager installs itself as the session's timeout handler: on
    inactivity every record is flushed and erased before keys are cleared.
    """

    def __init__(
        self,
        engine: HybridCryptoEngine,
        storage: SecureTempStorage,
        surface: EditingSurface,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        passphrase_provider: Optional[PassphraseProvider] = None,
        encrypted_suffix: str = ENCRYPTED_SUFFIX,
    ) -> None:
        self._engine = engine
        self._storage = storage
        self._surface = surface
        self._debounce_seconds = debounce_seconds
        self._passphrase_provider = passphrase_provider
        self._encrypted_suffix = encrypted_suffix
        self._records: dict[Path, TempFileRecord] = {}
        self._opening: dict[Path, asyncio.Task] = {}
        self._unlock_lock: Optional[asyncio.Lock] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._log = logging.getLogger("securenotes.tempfiles")

        engine.session.set_timeout_handler(self._on_session_timeout)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def records(self) -> tuple[TempFileRecord, ...]:
        return tuple(self._records.values())

    @property
    def storage(self) -> SecureTempStorage:
        return self._storage

    def is_open(self, encrypted_path: Path | str) -> bool:
        return _key(encrypted_path) in self._records

    def get_temp_path(self, encrypted_path: Path | str) -> Optional[Path]:
        record = self._records.get(_key(encrypted_path))
        return record.temporary_path if record else None

    def is_open_with_unsaved_changes(self, encrypted_path: Path | str) -> bool:
        """
        True if the file is open and some edit is not yet in its envelope.

        Used to decide whether to prompt before a move, delete or lock.
        """
        record = self._records.get(_key(encrypted_path))
        if record is None:
            return False
        return self._surface.is_dirty(record.temporary_path) or record.has_pending_changes

    def _find_by_temp(self, temporary_path: Path | str) -> Optional[TempFileRecord]:
        target = _key(temporary_path)
        for record in self._records.values():
            if record.temporary_path == target:
                return record
        return None

    # ------------------------------------------------------------------
    # Unlock
    # ------------------------------------------------------------------

    def _bind_loop(self) -> asyncio.AbstractEventLoop:
        loop = asyncio.get_running_loop()
        if self._loop is not loop:
            self._loop = loop
            self._unlock_lock = asyncio.Lock()
        return loop

    async def ensure_unlocked(self) -> bool:
        """
        Unlock the engine, prompting for a passphrase if needed.

        Concurrent callers share one prompt.

        Returns:
            False if the user cancelled the prompt
        """
        self._bind_loop()
        if self._engine.is_unlocked:
            return True

        async with self._unlock_lock:
            if self._engine.is_unlocked:
                return True
            try:
                unlocked = await asyncio.to_thread(self._engine.unlock, self._passphrase_provider)
            except (ConfigurationError, AuthenticationError) as e:
                self._report("Cannot unlock encryption", e)
                raise

        if not unlocked:
            self._surface.show_warning("Encryption is locked. The file was not opened.")
        return unlocked

    # ------------------------------------------------------------------
    # Open / create
    # ------------------------------------------------------------------

    async def open(self, encrypted_path: Path | str) -> Optional[Path]:
        """
        Decrypt an encrypted file into the session directory and show it.

        Opening a file that is already open reuses the existing working copy.

        Returns:
            The plaintext path, or None if unlocking was cancelled

        Raises:
            ConfigurationError / AuthenticationError: If unlocking fails
            IntegrityCheckFailedError: If the file appears tampered with
            DecryptionFailedError: If the file cannot be decrypted
            TempFileCreateFailedError: If the working copy cannot be written
        """
        loop = self._bind_loop()
        key = _key(encrypted_path)

        while True:
            record = self._records.get(key)
            if record is None or record.closing is None:
                break
            await record.closing

        if record is not None:
            self._log.debug("Reusing working copy for %s", key)
            await self._surface.show(record.temporary_path)
            return record.temporary_path

        pending = self._opening.get(key)
        if pending is not None:
            return await pending

        task = loop.create_task(self._open_new(key), name=f"open-{key.name}")
        self._opening[key] = task
        try:
            temporary_path = await task
        finally:
            self._opening.pop(key, None)

        if temporary_path is not None:
            await self._surface.show(temporary_path)
        return temporary_path

    async def _open_new(self, key: Path) -> Optional[Path]:
        if not await self.ensure_unlocked():
            return None

        try:
            plaintext = await asyncio.to_thread(self._engine.decrypt_file, key)
        except (SecureNotesError, OSError) as e:
            self._report(f"Failed to open {key.name}", e)
            raise

        temporary_path = self._storage.create_temp_path(str(key), self._display_name(key))
        try:
            await asyncio.to_thread(self._storage.write_secure_file, temporary_path, plaintext)
        except OSError as e:
            await self._discard_partial(temporary_path)
            error = TempFileCreateFailedError(f"Cannot write working copy {temporary_path}: {e}")
            self._report(f"Failed to open {key.name}", error)
            raise error from e

        record = TempFileRecord(
            temporary_path=temporary_path,
            encrypted_path=key,
            last_modified=time.time(),
        )
        record.watch_handle = self._surface.watch(temporary_path, self.notify_changed)
        self._records[key] = record

        self._log.info("Opened %s as %s", key, temporary_path)
        return temporary_path

    async def _discard_partial(self, temporary_path: Path) -> None:
        try:
            await asyncio.to_thread(self._storage.delete_secure_file, temporary_path)
        except (SecureNotesError, OSError):
            self._log.exception("Failed to erase partial working copy %s", temporary_path)

    def _display_name(self, key: Path) -> str:
        name = key.name
        if name.endswith(self._encrypted_suffix) and len(name) > len(self._encrypted_suffix):
            return name[: -len(self._encrypted_suffix)]
        return name

    async def create(self, encrypted_path: Path | str, content: bytes = b"") -> Optional[Path]:
        """
        Write a new encrypted file and open it for editing.

        Raises:
            FileAlreadyExistsError: If `encrypted_path` exists
        """
        self._bind_loop()
        if not await self.ensure_unlocked():
            return None

        key = _key(encrypted_path)
        try:
            await asyncio.to_thread(self._engine.create_encrypted_file, key, content)
        except (SecureNotesError, OSError) as e:
            self._report(f"Failed to create {key.name}", e)
            raise

        return await self.open(key)

    # ------------------------------------------------------------------
    # Change notifications
    # ------------------------------------------------------------------

    def notify_changed(self, temporary_path: Path | str) -> None:
        """The working copy changed on disk. Re-encrypts after the debounce window."""
        record = self._find_by_temp(temporary_path)
        if record is None:
            return

        if record.closing is not None:
            record.dirty = True
            return

        if record.debounce_handle is not None:
            record.debounce_handle.cancel()

        loop = asyncio.get_running_loop()
        record.debounce_handle = loop.call_later(
            self._debounce_seconds,
            self._on_debounce,
            record,
        )

    def notify_saved(self, temporary_path: Path | str) -> None:
        """The host saved the working copy. Re-encrypts immediately."""
        record = self._find_by_temp(temporary_path)
        if record is None:
            return

        self._cancel_debounce(record)
        self._kick(record)

    def _on_debounce(self, record: TempFileRecord) -> None:
        record.debounce_handle = None
        if self._records.get(record.encrypted_path) is record:
            self._kick(record)

    def _cancel_debounce(self, record: TempFileRecord) -> None:
        if record.debounce_handle is not None:
            record.debounce_handle.cancel()
            record.debounce_handle = None
            record.dirty = True

    def _kick(self, record: TempFileRecord) -> None:
        record.dirty = True
        if record.closing is not None:
            return  # the close sequence drains dirty records itself
        if record.task is not None and not record.task.done():
            return  # picked up by the running loop
        record.task = asyncio.get_running_loop().create_task(
            self._reencrypt_loop(record),
            name=f"reencrypt-{record.temporary_path.name}",
        )

    # ------------------------------------------------------------------
    # Re-encryption
    # ------------------------------------------------------------------

    async def _reencrypt_once(self, record: TempFileRecord) -> None:
        content = await asyncio.to_thread(self._storage.read_secure_file, record.temporary_path)
        await asyncio.to_thread(self._engine.encrypt_to_file, content, record.encrypted_path)
        record.last_modified = time.time()

    async def _reencrypt_loop(self, record: TempFileRecord) -> bool:
        """
        Re-encrypt until the record is clean.

        Returns:
            False if a re-encryption failed; the record stays dirty
        """
        while record.dirty:
            record.dirty = False
            try:
                await self._reencrypt_once(record)
            except (SecureNotesError, OSError) as e:
                record.dirty = True
                record.last_error = e
                self._report(f"Failed to save {record.encrypted_path.name}", e)
                return False

            record.last_error = None
            self._log.debug("Re-encrypted %s", record.encrypted_path)

        return True

    async def _flush(self, record: TempFileRecord, final: bool = False) -> bool:
        """
        Persist every pending edit of a record.

        Args:
            final: Force one more re-encryption from the on-disk plaintext
                even if nothing is known to be pending

        Returns:
            True if the envelope reflects the latest plaintext
        """
        self._cancel_debounce(record)

        while record.task is not None and not record.task.done():
            await record.task

        if final:
            if not record.temporary_path.exists():
                self._log.warning("Working copy already gone: %s", record.temporary_path)
                record.dirty = False
                return True
            record.dirty = True

        if not record.dirty:
            return True

        record.task = asyncio.get_running_loop().create_task(
            self._reencrypt_loop(record),
            name=f"flush-{record.temporary_path.name}",
        )
        return await record.task

    async def flush(self, encrypted_path: Path | str) -> bool:
        """Persist pending edits of one file without closing it."""
        self._bind_loop()
        record = self._records.get(_key(encrypted_path))
        if record is None:
            return True
        return await self._flush(record)

    async def flush_all(self) -> bool:
        self._bind_loop()
        results = [await self._flush(record) for record in list(self._records.values())]
        return all(results)

    # ------------------------------------------------------------------
    # Close / erase
    # ------------------------------------------------------------------

    async def close(self, temporary_path: Path | str) -> bool:
        """
        Flush, then erase the working copy and drop its record.

        Erasure never starts before the last edit is re-encrypted.

        Returns:
            True if the record is gone. False if the final re-encryption
            or the erase failed; the record and plaintext are kept.
        """
        self._bind_loop()
        record = self._find_by_temp(temporary_path)
        if record is None:
            return True
        return await self._close(record, final=True)

    async def _close(self, record: TempFileRecord, final: bool) -> bool:
        if record.closing is None:
            record.closing = asyncio.get_running_loop().create_task(
                self._close_record(record, final),
                name=f"close-{record.temporary_path.name}",
            )
        return await record.closing

    async def _close_record(self, record: TempFileRecord, final: bool) -> bool:
        if not await self._flush(record, final=final):
            record.closing = None
            self._surface.show_warning(
                f"{record.encrypted_path.name} could not be saved. "
                "The decrypted copy was kept so your edits are not lost."
            )
            return False

        try:
            await asyncio.to_thread(self._storage.delete_secure_file, record.temporary_path)
        except (SecureNotesError, OSError) as e:
            record.closing = None
            self._report(f"Failed to erase working copy of {record.encrypted_path.name}", e)
            return False

        if record.watch_handle is not None:
            record.watch_handle.dispose()
            record.watch_handle = None

        if self._records.get(record.encrypted_path) is record:
            del self._records[record.encrypted_path]

        self._log.info("Closed %s, working copy erased", record.encrypted_path)
        return True

    async def on_file_moved_or_deleted(
        self,
        encrypted_path: Path | str,
        new_path: Optional[Path | str] = None,
    ) -> bool:
        """
        The encrypted file was moved, renamed or deleted.

        Closes the surface showing it, then flushes and erases. With
        `new_path` the final flush goes to the new location.
        """
        self._bind_loop()
        record = self._records.get(_key(encrypted_path))
        if record is None:
            return True

        self._log.info("Handling moved/deleted file %s", record.encrypted_path)
        if new_path is not None:
            self._retarget(record, _key(new_path))

        await self._surface.close(record.temporary_path)
        return await self._close(record, final=True)

    def _retarget(self, record: TempFileRecord, new_key: Path) -> None:
        if new_key in self._records and self._records[new_key] is not record:
            self._log.warning("%s is already open, keeping original target", new_key)
            return
        del self._records[record.encrypted_path]
        record.encrypted_path = new_key
        self._records[new_key] = record

    async def save_and_close_before_move(self, encrypted_path: Path | str) -> bool:
        """
        Save, flush and erase before a caller moves the encrypted file.

        Returns:
            True if the file is safe to move (or was not open). False if
            anything failed; the caller should abort the move.
        """
        self._bind_loop()
        record = self._records.get(_key(encrypted_path))
        if record is None:
            return True

        self._log.info("Saving and closing before move: %s", record.encrypted_path)
        temporary_path = record.temporary_path

        try:
            if self._surface.is_dirty(temporary_path):
                await self._surface.save(temporary_path)
        except Exception as e:
            self._report(f"Failed to save changes before moving {record.encrypted_path.name}", e)
            return False

        if not await self._flush(record, final=temporary_path.exists()):
            self._surface.show_error(
                f"Failed to save changes before moving {record.encrypted_path.name}"
            )
            return False

        await self._surface.close(temporary_path)
        return await self._close(record, final=False)

    async def close_all(self) -> bool:
        self._bind_loop()
        results = [await self._close(record, final=True) for record in list(self._records.values())]
        return all(results)

    # ------------------------------------------------------------------
    # Lock / dispose
    # ------------------------------------------------------------------

    async def lock(self, force: bool = False) -> bool:
        """
        Flush and erase every record, then clear keys.

        Args:
            force: Clear keys even if some record could not be saved.
                Unsaved records are kept with their plaintext.

        Returns:
            True if every record was closed
        """
        self._bind_loop()
        closed = await self.close_all()
        if not closed and not force:
            self._surface.show_warning("Some files could not be saved. Encryption stays unlocked.")
            return False

        await asyncio.to_thread(self._engine.lock)
        self._log.info("Locked, %d record(s) retained", len(self._records))
        return closed

    async def dispose(self, force: bool = False) -> bool:
        """
        Flush and erase every record, then remove the session directory.

        Args:
            force: Remove the directory even if some record could not be saved

        Returns:
            True if the session directory was removed
        """
        self._bind_loop()
        closed = await self.close_all()
        if not closed and not force:
            self._surface.show_warning(
                "Some files could not be saved. Their decrypted copies were kept."
            )
            return False

        for record in list(self._records.values()):
            if record.watch_handle is not None:
                record.watch_handle.dispose()
        self._records.clear()

        await asyncio.to_thread(self._storage.dispose)
        self._engine.session.set_timeout_handler(None)
        return True

    def _on_session_timeout(self) -> None:
        """Runs on the session timer thread."""
        loop = self._loop
        if loop is None or loop.is_closed() or not loop.is_running():
            self._engine.lock()
            return

        future = asyncio.run_coroutine_threadsafe(self.lock(force=True), loop)
        future.add_done_callback(self._log_timeout_lock)

    def _log_timeout_lock(self, future: Future) -> None:
        if future.cancelled():
            self._log.warning("Auto-lock was cancelled")
            return
        exc = future.exception()
        if exc is not None:
            self._log.error("Auto-lock failed: %s: %s", type(exc).__name__, exc)

    def _report(self, action: str, error: BaseException) -> None:
        self._log.error("%s: %s: %s", action, type(error).__name__, error)
        self._surface.show_error(f"{action}: {_user_message(error)}")
