"""
SecureNotes Cryptographic Core
==============================

Hybrid encryption of individual notes.

Architecture:
    1. AES-256-GCM: Content encryption with a fresh key per file
    2. HMAC-SHA256: Integrity tag over the ciphertext
    3. RSA-4096 OAEP-SHA256: Wrapping of the per-file key

Security Properties:
    - All encryption is authenticated (AEAD + HMAC)
    - Private key held only inside an unlocked Session
    - Constant-time MAC comparison
    - Secure RNG for all random values

WARNING: This module handles sensitive cryptographic material.
         Incorrect usage can compromise security.
"""

from securenotes.core.crypto.aes_gcm import AesGcmCipher, SealedContent
from securenotes.core.crypto.hybrid_engine import (
    ENVELOPE_VERSION,
    EncryptedEnvelope,
    HybridCryptoEngine,
)
from securenotes.core.crypto.rsa_keys import KeyPairPaths, generate_key_pair

__all__ = [
    "AesGcmCipher",
    "ENVELOPE_VERSION",
    "EncryptedEnvelope",
    "HybridCryptoEngine",
    "KeyPairPaths",
    "SealedContent",
    "generate_key_pair",
]
