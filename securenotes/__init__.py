"""
SecureNotes - Per-file Hybrid Encryption for Notes
==================================================

Encrypts each note with its own AES-256-GCM key wrapped under an RSA-4096
public key, and lets an ordinary editor work on a short-lived decrypted
copy that is re-encrypted on every change and erased on close.

Security Notice:
- No plaintext, passphrases or key material is logged
- Integrity is verified before any plaintext is produced
- Plaintext copies live in RAM-backed storage where the host offers it
"""

__version__ = "0.1.0"
__author__ = "SecureNotes Team"

from securenotes.core.config import SecureConfig  # noqa: E402
from securenotes.core.logging import get_secure_logger  # noqa: E402

__all__ = ["SecureConfig", "get_secure_logger", "__version__"]
