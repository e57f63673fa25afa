"""Best-effort wiping of file keys and passphrases held in memory."""

from securenotes.core.memory.zeroization import passphrase_bytes, secure_zero, wiped

__all__ = [
    "passphrase_bytes",
    "secure_zero",
    "wiped",
]
