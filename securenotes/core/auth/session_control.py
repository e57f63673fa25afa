"""
Session Control
================

Owns the unlocked key pair and the inactivity auto-lock.

A Session is an explicit object shared by reference between the crypto
engine and the plaintext lifecycle manager; there is no module-level key
state.

State machine:
    Locked --(install_keys)--> Unlocked --(lock | timeout)--> Locked

Security Features:
- Keys are only reachable through a guarded accessor that raises
  NotUnlockedError when locked
- lock() waits for in-flight crypto operations to finish before it
  drops the key references
- Automatic expiration after a period of inactivity
- Every successful operation refreshes the activity timestamp
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Final, Iterator, Optional

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from securenotes.core.errors import NotUnlockedError


# Session configuration
DEFAULT_SESSION_TIMEOUT: Final[float] = 30 * 60  # 30 minutes

StateListener = Callable[[bool], None]


@dataclass(frozen=True, slots=True)
class SessionState:
    """
    Snapshot of the session.

    Attributes:
        is_unlocked: Private key is loaded
        last_activity: time.monotonic() of the last successful operation
        timeout_seconds: Inactivity timeout, None when auto-lock is disabled
    """

    is_unlocked: bool
    last_activity: float
    timeout_seconds: Optional[float]


class Session:
    """
    Holder of the unlocked key pair and the auto-lock timer.

    Usage:
        session = Session(timeout_seconds=900)
        session.install_public_key(public_key)
        session.install_private_key(private_key)

        with session.using_private_key() as key:
            ...

        session.lock()

    Thread safety:
        Timeout callbacks run on a timer thread, crypto work may run on
        worker threads. All state is guarded by one condition variable;
        the lock transition blocks until no operation holds a key.
    """

    __slots__ = (
        "_cond", "_public_key", "_private_key", "_in_use", "_timeout",
        "_last_activity", "_timer", "_listeners", "_timeout_handler", "_log",
    )

    def __init__(self, timeout_seconds: Optional[float] = DEFAULT_SESSION_TIMEOUT) -> None:
        """
        Initialize a locked session.

        Args:
            timeout_seconds: Inactivity timeout; None or <= 0 disables auto-lock
        """
        self._cond = threading.Condition()
        self._public_key: Optional[RSAPublicKey] = None
        self._private_key: Optional[RSAPrivateKey] = None
        self._in_use = 0
        self._timeout = self._normalize_timeout(timeout_seconds)
        self._last_activity = time.monotonic()
        self._timer: Optional[threading.Timer] = None
        self._listeners: list[StateListener] = []
        self._timeout_handler: Optional[Callable[[], None]] = None
        self._log = logging.getLogger("securenotes.session")

    @staticmethod
    def _normalize_timeout(timeout_seconds: Optional[float]) -> Optional[float]:
        if timeout_seconds is None or timeout_seconds <= 0:
            return None
        return float(timeout_seconds)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_unlocked(self) -> bool:
        with self._cond:
            return self._private_key is not None

    @property
    def has_public_key(self) -> bool:
        with self._cond:
            return self._public_key is not None

    @property
    def state(self) -> SessionState:
        with self._cond:
            return SessionState(
                is_unlocked=self._private_key is not None,
                last_activity=self._last_activity,
                timeout_seconds=self._timeout,
            )

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        """
        Register a callback invoked with the new unlocked state on every
        lock/unlock transition.

        Returns:
            A function that removes the listener
        """
        with self._cond:
            self._listeners.append(listener)

        def remove() -> None:
            with self._cond:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return remove

    def _notify(self, is_unlocked: bool) -> None:
        with self._cond:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(is_unlocked)
            except Exception:
                self._log.exception("Session state listener failed")

    # ------------------------------------------------------------------
    # Key custody
    # ------------------------------------------------------------------

    def install_public_key(self, key: RSAPublicKey) -> None:
        with self._cond:
            self._public_key = key

    def install_private_key(self, key: RSAPrivateKey) -> None:
        """Install the decrypted private key and arm the auto-lock."""
        with self._cond:
            was_unlocked = self._private_key is not None
            self._private_key = key
            self._last_activity = time.monotonic()
            self._reschedule_locked()

        if not was_unlocked:
            self._log.info("Session unlocked")
            self._notify(True)

    @contextmanager
    def using_public_key(self) -> Iterator[RSAPublicKey]:
        """
        Borrow the public key for one operation.

        Raises:
            NotUnlockedError: If no public key is loaded
        """
        with self._cond:
            key = self._public_key
            if key is None:
                raise NotUnlockedError()
            self._in_use += 1
        try:
            yield key
        finally:
            self._release()

    @contextmanager
    def using_private_key(self) -> Iterator[RSAPrivateKey]:
        """
        Borrow the private key for one operation.

        Raises:
            NotUnlockedError: If the session is locked
        """
        with self._cond:
            key = self._private_key
            if key is None:
                raise NotUnlockedError()
            self._in_use += 1
        try:
            yield key
        finally:
            self._release()

    def _release(self) -> None:
        with self._cond:
            self._in_use -= 1
            self._cond.notify_all()

    def lock(self) -> None:
        """
        Lock the session: clear key references and cancel the timer.

        Blocks until in-flight operations that borrowed a key return.
        """
        with self._cond:
            while self._in_use > 0:
                self._cond.wait()
            was_unlocked = self._private_key is not None
            self._public_key = None
            self._private_key = None
            self._cancel_timer_locked()

        if was_unlocked:
            self._log.info("Session locked - keys cleared from memory")
            self._notify(False)

    # ------------------------------------------------------------------
    # Inactivity timeout
    # ------------------------------------------------------------------

    @property
    def timeout_seconds(self) -> Optional[float]:
        return self._timeout

    def set_timeout(self, timeout_seconds: Optional[float]) -> None:
        """Change the inactivity timeout and re-arm it if unlocked."""
        with self._cond:
            self._timeout = self._normalize_timeout(timeout_seconds)
            self._reschedule_locked()
        self._log.debug("Session timeout set to %s", self._timeout)

    def set_timeout_handler(self, handler: Optional[Callable[[], None]]) -> None:
        """
        Replace what happens on timeout. The default is lock().

        The handler runs on the timer thread and is responsible for
        eventually locking the session.
        """
        with self._cond:
            self._timeout_handler = handler

    def record_activity(self) -> None:
        """Refresh the activity timestamp and reschedule the timeout."""
        with self._cond:
            self._last_activity = time.monotonic()
            self._reschedule_locked()

    def _reschedule_locked(self) -> None:
        self._cancel_timer_locked()

        if self._private_key is None or self._timeout is None:
            return

        timer = threading.Timer(self._timeout, self._on_timeout)
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_timer_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timeout(self) -> None:
        with self._cond:
            if self._timer is None or threading.current_thread() is not self._timer:
                return  # superseded by a reschedule
            self._timer = None
            handler = self._timeout_handler
            timeout = self._timeout

        self._log.info("Session timeout after %ss of inactivity - auto-locking", timeout)
        if handler is not None:
            handler()
        else:
            self.lock()

    def __repr__(self) -> str:
        state = "unlocked" if self.is_unlocked else "locked"
        return f"Session({state}, timeout={self._timeout})"
