"""Outbound email configuration, providers and templates."""

from .config import EmailConfig, load_email_config
from .providers import (
    DevPrintProvider,
    EmailDeliveryError,
    EmailProvider,
    ResendProvider,
    SMTPProvider,
    create_email_provider,
)
from .renderer import EmailRenderer, TemplateNotFoundError, render_subject_body

__all__ = [
    "DevPrintProvider",
    "EmailConfig",
    "EmailDeliveryError",
    "EmailProvider",
    "EmailRenderer",
    "ResendProvider",
    "SMTPProvider",
    "TemplateNotFoundError",
    "create_email_provider",
    "load_email_config",
    "render_subject_body",
]
