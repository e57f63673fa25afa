"""
Key and Passphrase Wiping
=========================

File keys and encoded passphrases live in bytearrays so they can be
overwritten as soon as the operation that needed them is over.

This is best effort. The bytes copies handed to the cryptography library
and the original passphrase str cannot be wiped from Python.
"""

from __future__ import annotations

import ctypes
from contextlib import contextmanager
from typing import Iterator, Optional


def secure_zero(data: bytearray) -> None:
    """Overwrite a buffer in place with zeros."""
    if not data:
        return
    try:
        view = (ctypes.c_char * len(data)).from_buffer(data)
        ctypes.memset(ctypes.addressof(view), 0, len(data))
    except (TypeError, ValueError, BufferError):
        data[:] = bytes(len(data))


@contextmanager
def wiped(*buffers: bytearray) -> Iterator[None]:
    """
    Zero every buffer when the block exits, normally or not.

    Usage:
        key = new_file_key()
        with wiped(key):
            cipher.seal(bytes(key), plaintext)
    """
    try:
        yield
    finally:
        for buf in buffers:
            secure_zero(buf)


@contextmanager
def passphrase_bytes(passphrase: Optional[str]) -> Iterator[Optional[bytearray]]:
    """UTF-8 encoded passphrase in a buffer that is zeroed on exit. None passes through."""
    if passphrase is None:
        yield None
        return
    secret = bytearray(passphrase.encode("utf-8"))
    with wiped(secret):
        yield secret
