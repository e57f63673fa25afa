"""
Secure Configuration Module
===========================

Provides immutable, environment-aware configuration with security-first defaults.

Security Features:
- Immutable configuration after initialization
- Environment variable override support
- Passphrases are never read from the environment
- Type-safe configuration access
- OS-aware path handling
"""

from __future__ import annotations

import hashlib
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final, Optional

from securenotes import __version__


# Keys that must never be accepted from the environment
_SENSITIVE_KEYS: Final[frozenset[str]] = frozenset({
    "passphrase", "password", "secret", "token", "credential",
})


def _is_sensitive_key(key: str) -> bool:
    """Check if a configuration key might contain sensitive data."""
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in _SENSITIVE_KEYS)


def _default_dir(kind: str) -> Path:
    """
    OS-appropriate location for "data", "config" or "log".

    Linux follows the XDG base directory variables.
    """
    system = platform.system().lower()
    home = Path.home()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", home / "AppData" / "Local")) / "SecureNotes"
        return base / "Logs" if kind == "log" else base
    if system == "darwin":
        return {
            "data": home / "Library" / "Application Support" / "SecureNotes",
            "config": home / "Library" / "Preferences" / "SecureNotes",
            "log": home / "Library" / "Logs" / "SecureNotes",
        }[kind]

    xdg_var, fallback = {
        "data": ("XDG_DATA_HOME", home / ".local" / "share"),
        "config": ("XDG_CONFIG_HOME", home / ".config"),
        "log": ("XDG_STATE_HOME", home / ".local" / "state"),
    }[kind]
    base = Path(os.environ.get(xdg_var, fallback)) / "SecureNotes"
    return base / "logs" if kind == "log" else base


@dataclass(frozen=True, slots=True)
class PathConfig:
    """Immutable path configuration with OS-aware defaults."""

    data_dir: Path = field(default_factory=lambda: _default_dir("data"))
    config_dir: Path = field(default_factory=lambda: _default_dir("config"))
    log_dir: Path = field(default_factory=lambda: _default_dir("log"))

    def __post_init__(self) -> None:
        for name in ("data_dir", "config_dir", "log_dir"):
            if not getattr(self, name).is_absolute():
                raise ValueError(f"{name} must be absolute: {getattr(self, name)}")


@dataclass(frozen=True, slots=True)
class EncryptionConfig:
    """
    Key locations and session policy.

    An unset key path means encryption is not configured; the engine
    raises EncryptionNotConfiguredError when it needs that key.
    A timeout of zero or less disables automatic locking.
    """

    enabled: bool = True
    public_key_path: Optional[Path] = None
    private_key_path: Optional[Path] = None
    session_timeout_minutes: float = 30

    def __post_init__(self) -> None:
        if not isinstance(self.session_timeout_minutes, (int, float)):
            raise ValueError("session_timeout_minutes must be a number")

    @property
    def session_timeout_seconds(self) -> Optional[float]:
        """Timeout in seconds, or None when auto-lock is disabled."""
        if self.session_timeout_minutes <= 0:
            return None
        return self.session_timeout_minutes * 60


@dataclass(frozen=True, slots=True)
class EditingConfig:
    """Plaintext lifecycle settings."""

    save_debounce_ms: int = 100
    overwrite_passes: int = 3
    temp_dir_prefix: str = "secureNotes-"
    encrypted_suffix: str = ".enc"

    def __post_init__(self) -> None:
        if self.save_debounce_ms < 0:
            raise ValueError("save_debounce_ms cannot be negative")
        if self.overwrite_passes < 1:
            raise ValueError("overwrite_passes must be at least 1")
        if not self.encrypted_suffix.startswith("."):
            raise ValueError("encrypted_suffix must start with '.'")

    @property
    def save_debounce_seconds(self) -> float:
        return self.save_debounce_ms / 1000


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Immutable logging configuration."""

    level: str = "INFO"
    max_file_size_bytes: int = 10 * 1024 * 1024  # 10 MB
    backup_count: int = 5
    enable_console: bool = True
    enable_file: bool = False
    enable_json: bool = False

    def __post_init__(self) -> None:
        """Validate logging settings."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.level.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {self.level}")


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Immutable application configuration."""

    app_name: str = "SecureNotes"
    version: str = __version__


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


class SecureConfig:
    """
    Centralized, immutable configuration loader with environment override support.

    Usage:
        config = SecureConfig.load()
        pub = config.encryption.public_key_path
        debounce = config.editing.save_debounce_seconds
    """

    __slots__ = ("_paths", "_encryption", "_editing", "_logging", "_app", "_frozen", "_config_hash")

    _instance: Optional[SecureConfig] = None

    def __init__(
        self,
        paths: Optional[PathConfig] = None,
        encryption: Optional[EncryptionConfig] = None,
        editing: Optional[EditingConfig] = None,
        logging: Optional[LoggingConfig] = None,
        app: Optional[AppConfig] = None,
    ) -> None:
        """Initialize configuration. Use SecureConfig.load() for standard initialization."""
        object.__setattr__(self, "_frozen", False)
        object.__setattr__(self, "_paths", paths or PathConfig())
        object.__setattr__(self, "_encryption", encryption or EncryptionConfig())
        object.__setattr__(self, "_editing", editing or EditingConfig())
        object.__setattr__(self, "_logging", logging or LoggingConfig())
        object.__setattr__(self, "_app", app or AppConfig())
        object.__setattr__(self, "_config_hash", self._compute_hash())
        object.__setattr__(self, "_frozen", True)

    def _compute_hash(self) -> str:
        """Compute a hash of the configuration for integrity checking."""
        config_str = f"{self._paths}|{self._encryption}|{self._editing}|{self._logging}|{self._app}"
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @property
    def paths(self) -> PathConfig:
        return self._paths

    @property
    def encryption(self) -> EncryptionConfig:
        return self._encryption

    @property
    def editing(self) -> EditingConfig:
        return self._editing

    @property
    def logging(self) -> LoggingConfig:
        return self._logging

    @property
    def app(self) -> AppConfig:
        return self._app

    @property
    def config_hash(self) -> str:
        return self._config_hash

    @classmethod
    def load(cls, env_prefix: str = "SECURENOTES") -> SecureConfig:
        """
        Load configuration with environment variable overrides.

        Environment variables should be prefixed with SECURENOTES_ and use
        double underscores for nested values.

        Examples:
            SECURENOTES_ENCRYPTION__PUBLIC_KEY_PATH=/keys/secureNotes_public.pem
            SECURENOTES_ENCRYPTION__SESSION_TIMEOUT_MINUTES=10
            SECURENOTES_EDITING__SAVE_DEBOUNCE_MS=250
            SECURENOTES_LOGGING__LEVEL=DEBUG

        Args:
            env_prefix: Prefix for environment variables (default: SECURENOTES)

        Returns:
            Configured SecureConfig instance
        """
        env = cls._parse_env_overrides(env_prefix)

        paths_kwargs: dict[str, Any] = {}
        for name in ("data_dir", "config_dir", "log_dir"):
            if f"paths.{name}" in env:
                paths_kwargs[name] = Path(env[f"paths.{name}"]).expanduser()

        encryption_kwargs: dict[str, Any] = {}
        if "encryption.enabled" in env:
            encryption_kwargs["enabled"] = _parse_bool(env["encryption.enabled"])
        for name in ("public_key_path", "private_key_path"):
            value = env.get(f"encryption.{name}", "").strip()
            if value:
                encryption_kwargs[name] = Path(value).expanduser()
        if "encryption.session_timeout_minutes" in env:
            encryption_kwargs["session_timeout_minutes"] = float(
                env["encryption.session_timeout_minutes"]
            )

        editing_kwargs: dict[str, Any] = {}
        if "editing.save_debounce_ms" in env:
            editing_kwargs["save_debounce_ms"] = int(env["editing.save_debounce_ms"])
        if "editing.overwrite_passes" in env:
            editing_kwargs["overwrite_passes"] = int(env["editing.overwrite_passes"])

        logging_kwargs: dict[str, Any] = {}
        if "logging.level" in env:
            logging_kwargs["level"] = env["logging.level"]
        if "logging.enable_console" in env:
            logging_kwargs["enable_console"] = _parse_bool(env["logging.enable_console"])
        if "logging.enable_file" in env:
            logging_kwargs["enable_file"] = _parse_bool(env["logging.enable_file"])
        if "logging.enable_json" in env:
            logging_kwargs["enable_json"] = _parse_bool(env["logging.enable_json"])

        return cls(
            paths=PathConfig(**paths_kwargs) if paths_kwargs else None,
            encryption=EncryptionConfig(**encryption_kwargs) if encryption_kwargs else None,
            editing=EditingConfig(**editing_kwargs) if editing_kwargs else None,
            logging=LoggingConfig(**logging_kwargs) if logging_kwargs else None,
        )

    @staticmethod
    def _parse_env_overrides(prefix: str) -> dict[str, str]:
        """Parse environment variables with the given prefix."""
        overrides: dict[str, str] = {}
        prefix_upper = f"{prefix.upper()}_"

        for key, value in os.environ.items():
            if key.startswith(prefix_upper):
                # SECURENOTES_SECTION__KEY -> section.key
                config_key = key[len(prefix_upper):].lower().replace("__", ".")

                if _is_sensitive_key(config_key):
                    continue

                overrides[config_key] = value

        return overrides

    @classmethod
    def get_instance(cls) -> SecureConfig:
        """Get or create the process-wide configuration instance."""
        if cls._instance is None:
            cls._instance = cls.load()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the shared instance. Use only for testing."""
        cls._instance = None

    def ensure_directories(self) -> None:
        """Create all required directories with secure permissions."""
        import stat

        for directory in (self._paths.data_dir, self._paths.config_dir, self._paths.log_dir):
            directory.mkdir(parents=True, exist_ok=True)

            if platform.system().lower() != "windows":
                directory.chmod(stat.S_IRWXU)  # 700 - owner only

    def __repr__(self) -> str:
        """Safe string representation without sensitive data."""
        return f"SecureConfig(hash={self._config_hash}, app={self._app.app_name})"

    def __setattr__(self, name: str, value: Any) -> None:
        """Prevent modification after initialization."""
        if hasattr(self, "_frozen") and self._frozen:
            raise AttributeError("SecureConfig is immutable after initialization")
        super().__setattr__(name, value)
