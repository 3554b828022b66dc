"""Email configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional
import os

from ..config import ConfigurationError, require, to_bool, to_float, to_int

SUPPORTED_PROVIDERS = ("resend", "smtp", "dev")


@dataclass(frozen=True)
class EmailConfig:
    """Configuration for outbound email delivery."""

    provider_name: str
    from_email: str
    resend_api_key: Optional[str]
    resend_api_url: str
    smtp_host: str
    smtp_port: int
    smtp_username: Optional[str]
    smtp_password: Optional[str]
    smtp_use_tls: bool
    timeout_seconds: float
    app_base_url: str


def load_email_config(env: Optional[Mapping[str, str]] = None) -> EmailConfig:
    """Load :class:`EmailConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    provider_name = (env_mapping.get("EMAIL_PROVIDER") or "resend").strip().lower() or "resend"
    if provider_name not in SUPPORTED_PROVIDERS:
        raise ConfigurationError(f"Unsupported EMAIL_PROVIDER {provider_name!r}")

    resend_api_key = (env_mapping.get("RESEND_API_KEY") or "").strip() or None
    if provider_name == "resend":
        (resend_api_key,) = require(env_mapping, "RESEND_API_KEY")

    from_email = env_mapping.get("FROM_EMAIL", "KAPstone Clinics <no-reply@mail.kapstoneclinics.com>")

    smtp_host = env_mapping.get("SMTP_HOST", "localhost")
    smtp_port = to_int(env_mapping.get("SMTP_PORT"), default=587)
    smtp_username = env_mapping.get("SMTP_USER") or None
    smtp_password = env_mapping.get("SMTP_PASS") or None
    smtp_use_tls = to_bool(env_mapping.get("SMTP_USE_TLS"), default=True)

    timeout_seconds = max(0.5, to_float(env_mapping.get("EMAIL_TIMEOUT_SECONDS"), default=5.0))
    app_base_url = env_mapping.get("APP_BASE_URL", "http://localhost:5173")

    return EmailConfig(
        provider_name=provider_name,
        from_email=from_email,
        resend_api_key=resend_api_key,
        resend_api_url=env_mapping.get("RESEND_API_URL", "https://api.resend.com"),
        smtp_host=smtp_host,
        smtp_port=smtp_port,
        smtp_username=smtp_username,
        smtp_password=smtp_password,
        smtp_use_tls=smtp_use_tls,
        timeout_seconds=timeout_seconds,
        app_base_url=app_base_url.rstrip("/"),
    )
