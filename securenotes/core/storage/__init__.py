"""
Storage profile selection and the per-session plaintext directory.
"""

from securenotes.core.storage.secure_temp import (
    SecureTempStorage,
    SecurityLevel,
    StorageInfo,
    StoragePlatform,
    StorageProfile,
    detect_storage_profile,
)

__all__ = [
    "SecureTempStorage",
    "SecurityLevel",
    "StorageInfo",
    "StoragePlatform",
    "StorageProfile",
    "detect_storage_profile",
]
