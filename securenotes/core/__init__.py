"""
Core module - Contains configuration, logging, errors and the encryption stack.
"""

from securenotes.core.config import SecureConfig
from securenotes.core.logging import get_secure_logger, SecureLogFilter

__all__ = ["SecureConfig", "get_secure_logger", "SecureLogFilter"]
