from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


_BACKENDS = ("sqlite", "postgres")
_LOG_FORMATS = ("console", "json")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
# Lower costs are only for tests, which build the hasher directly.
MIN_BCRYPT_ROUNDS = 12


@dataclass(frozen=True)
class AppConfig:
    """
    Process configuration, read once at startup.

    The rest of the code receives this object explicitly instead of
    consulting `os.environ`, so tests can build one by hand.
    """

    environment: str = "development"
    db_backend: str = "sqlite"
    db_path: str = "registration.db"
    database_url: Optional[str] = None
    bcrypt_rounds: int = 12
    log_level: str = "INFO"
    log_format: str = "console"
    host: str = "127.0.0.1"
    port: int = 8000

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def _int_setting(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def load_config(env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Build an `AppConfig` from environment variables (or the given mapping)."""

    if env is None:
        env = os.environ

    db_backend = env.get("DB_BACKEND", "sqlite").lower()
    if db_backend not in _BACKENDS:
        raise ValueError(f"DB_BACKEND must be one of {_BACKENDS}, got {db_backend!r}")

    database_url = env.get("DATABASE_URL") or None
    if db_backend == "postgres" and not database_url:
        raise ValueError("DATABASE_URL must be set when DB_BACKEND=postgres.")

    log_format = env.get("LOG_FORMAT", "console").lower()
    if log_format not in _LOG_FORMATS:
        raise ValueError(f"LOG_FORMAT must be one of {_LOG_FORMATS}, got {log_format!r}")

    log_level = env.get("LOG_LEVEL", "INFO").upper()
    if log_level not in _LOG_LEVELS:
        raise ValueError(f"LOG_LEVEL must be one of {_LOG_LEVELS}, got {log_level!r}")

    bcrypt_rounds = _int_setting(env, "BCRYPT_ROUNDS", 12)
    if not MIN_BCRYPT_ROUNDS <= bcrypt_rounds <= 31:
        raise ValueError(f"BCRYPT_ROUNDS must be between {MIN_BCRYPT_ROUNDS} and 31.")

    return AppConfig(
        environment=env.get("APP_ENV", "development").lower(),
        db_backend=db_backend,
        db_path=env.get("DB_PATH", "registration.db"),
        database_url=database_url,
        bcrypt_rounds=bcrypt_rounds,
        log_level=log_level,
        log_format=log_format,
        host=env.get("HOST", "127.0.0.1"),
        port=_int_setting(env, "PORT", 8000),
    )
