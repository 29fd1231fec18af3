"""
Application configuration for GramSehat.

Settings are layered: dataclass defaults, then a TOML file, then
environment variables. The TOML file mirrors the dataclass fields:

    [storage]
    db_path = "local_data/gramsehat.db"

    [remote]
    provider = "http"            # "http" or "supabase"; "mock" only when chosen explicitly
    url = "https://sync.example.org/api"
    api_key = "..."

    [sync]
    interval = 30
    batch_size = 50
    max_retry_attempts = 5
    batch_timeout = 20

    [logging]
    level = "INFO"
    to_file = true
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import toml

from gramsehat_core.errors import ConfigurationError


DEFAULT_CONFIG_PATH = Path("config") / "gramsehat.toml"

REMOTE_PROVIDERS = ("mock", "http", "supabase")


@dataclass
class AppConfig:
    """Runtime configuration."""

    # ==================== STORAGE ====================
    db_path: Path = field(default_factory=lambda: Path("local_data") / "gramsehat.db")

    # ==================== REMOTE ENDPOINT ====================
    # requires remote_url; the in-memory "mock" server must be named explicitly
    remote_provider: str = "http"
    remote_url: str = ""
    api_key: Optional[str] = None
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    # ==================== SYNC ====================
    sync_interval: float = 30.0       # seconds between background passes
    batch_size: int = 50              # outbox entries per upload batch
    max_retry_attempts: int = 5       # retry ceiling before escalation
    batch_timeout: float = 20.0       # network timeout per batch (seconds)

    # ==================== LOGGING ====================
    log_level: str = "INFO"
    log_to_file: bool = False

    def validate(self) -> None:
        if self.remote_provider not in REMOTE_PROVIDERS:
            raise ConfigurationError(
                f"Unknown remote provider: {self.remote_provider}",
                config_key="remote_provider",
                expected_type=" | ".join(REMOTE_PROVIDERS),
            )
        if self.remote_provider == "http" and not self.remote_url:
            raise ConfigurationError(
                "HTTP provider needs remote_url ([remote] url or GRAMSEHAT_REMOTE_URL)",
                config_key="remote_url",
            )
        if self.remote_provider == "supabase" and not (self.supabase_url and self.supabase_key):
            raise ConfigurationError(
                "Supabase provider needs SUPABASE_URL and SUPABASE_KEY",
                config_key="supabase_url",
            )
        for name in ("batch_size", "max_retry_attempts"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be at least 1", config_key=name, expected_type="int")
        for name in ("sync_interval", "batch_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive", config_key=name, expected_type="float")


# TOML section/key -> AppConfig field
_TOML_KEYS = {
    ("storage", "db_path"): "db_path",
    ("remote", "provider"): "remote_provider",
    ("remote", "url"): "remote_url",
    ("remote", "api_key"): "api_key",
    ("supabase", "url"): "supabase_url",
    ("supabase", "key"): "supabase_key",
    ("sync", "interval"): "sync_interval",
    ("sync", "batch_size"): "batch_size",
    ("sync", "max_retry_attempts"): "max_retry_attempts",
    ("sync", "batch_timeout"): "batch_timeout",
    ("logging", "level"): "log_level",
    ("logging", "to_file"): "log_to_file",
}

# Environment variable -> AppConfig field
_ENV_KEYS = {
    "GRAMSEHAT_DB_PATH": "db_path",
    "GRAMSEHAT_REMOTE_PROVIDER": "remote_provider",
    "GRAMSEHAT_REMOTE_URL": "remote_url",
    "GRAMSEHAT_API_KEY": "api_key",
    "SUPABASE_URL": "supabase_url",
    "SUPABASE_KEY": "supabase_key",
    "GRAMSEHAT_SYNC_INTERVAL": "sync_interval",
    "GRAMSEHAT_BATCH_SIZE": "batch_size",
    "GRAMSEHAT_MAX_RETRY_ATTEMPTS": "max_retry_attempts",
    "GRAMSEHAT_BATCH_TIMEOUT": "batch_timeout",
    "GRAMSEHAT_LOG_LEVEL": "log_level",
    "GRAMSEHAT_LOG_TO_FILE": "log_to_file",
}


_FIELD_TYPES = {
    "batch_size": "int",
    "max_retry_attempts": "int",
    "sync_interval": "float",
    "batch_timeout": "float",
    "log_to_file": "bool",
}


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw TOML/env value to the field's type."""
    try:
        if name == "db_path":
            return Path(value)
        if name in ("batch_size", "max_retry_attempts"):
            return int(value)
        if name in ("sync_interval", "batch_timeout"):
            return float(value)
        if name == "log_to_file":
            if isinstance(value, str):
                return value.strip().lower() in ("1", "true", "yes", "on")
            return bool(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid value for {name}: {value!r}",
            config_key=name,
            expected_type=_FIELD_TYPES.get(name),
        ) from e
    return value


def _from_toml(path: Path) -> Dict[str, Any]:
    try:
        data = toml.load(path)
    except toml.TomlDecodeError as e:
        raise ConfigurationError(f"Malformed config file {path}: {e}", config_key=str(path)) from e

    values = {}
    for (section, key), name in _TOML_KEYS.items():
        if key in data.get(section, {}):
            values[name] = _coerce(name, data[section][key])
    return values


def _from_env(environ: Dict[str, str]) -> Dict[str, Any]:
    return {
        name: _coerce(name, environ[var])
        for var, name in _ENV_KEYS.items()
        if environ.get(var)
    }


def load_config(
    path: Optional[Path] = None,
    environ: Optional[Dict[str, str]] = None,
) -> AppConfig:
    """
    Build the runtime configuration.

    Args:
        path: TOML file (default: config/gramsehat.toml; missing file is fine
            unless given explicitly)
        environ: Environment mapping (default: os.environ)

    Raises:
        ConfigurationError: invalid or inconsistent values
    """
    values: Dict[str, Any] = {}

    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if config_path.exists():
        values.update(_from_toml(config_path))
    elif path is not None:
        raise ConfigurationError(f"Config file not found: {config_path}", config_key="path")

    values.update(_from_env(dict(os.environ) if environ is None else environ))

    config = AppConfig(**values)
    config.validate()
    return config
