"""Application configuration helpers."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Tuple


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing or invalid."""

    def __init__(self, message: str, *, missing: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.missing = tuple(missing)


@dataclass(frozen=True)
class AppConfig:
    """Process-wide settings for the API service."""

    database_url: str
    db_connect_timeout: int
    db_statement_timeout_ms: int
    supabase_jwt_secret: str
    supabase_jwt_audience: str
    cors_origins: Tuple[str, ...]
    log_level: str


def to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Expected integer value, got {value!r}") from exc


def to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Expected float value, got {value!r}") from exc


def require(env: Mapping[str, str], *names: str) -> Tuple[str, ...]:
    """Return the values for ``names`` or raise naming every missing variable."""

    values = tuple((env.get(name) or "").strip() for name in names)
    missing = [name for name, value in zip(names, values) if not value]
    if missing:
        raise ConfigurationError(
            "Missing required environment variables: " + ", ".join(missing),
            missing=missing,
        )
    return values


def load_app_config(env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Load :class:`AppConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    database_url, jwt_secret = require(env_mapping, "DATABASE_URL", "SUPABASE_JWT_SECRET")
    origins = env_mapping.get("CORS_ORIGINS", "http://localhost:5173")

    return AppConfig(
        database_url=database_url,
        db_connect_timeout=max(1, to_int(env_mapping.get("DB_CONNECT_TIMEOUT"), default=5)),
        db_statement_timeout_ms=max(0, to_int(env_mapping.get("DB_STATEMENT_TIMEOUT_MS"), default=4000)),
        supabase_jwt_secret=jwt_secret,
        supabase_jwt_audience=env_mapping.get("SUPABASE_JWT_AUDIENCE", "authenticated"),
        cors_origins=tuple(origin.strip() for origin in origins.split(",") if origin.strip()),
        log_level=(env_mapping.get("LOG_LEVEL") or "INFO").upper(),
    )


__all__ = [
    "AppConfig",
    "ConfigurationError",
    "load_app_config",
    "require",
    "to_bool",
    "to_float",
    "to_int",
]
