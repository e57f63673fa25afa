"""
SecureNotes Session Module
==========================

Custody of the unlocked key pair with inactivity auto-lock.
"""

from securenotes.core.auth.session_control import (
    DEFAULT_SESSION_TIMEOUT,
    Session,
    SessionState,
)

__all__ = [
    "DEFAULT_SESSION_TIMEOUT",
    "Session",
    "SessionState",
]
