"""Email provider implementations used by the application."""
from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, Optional, Sequence

import httpx

from .config import EmailConfig

logger = logging.getLogger(__name__)


class EmailDeliveryError(RuntimeError):
    """Raised when a provider rejects or cannot deliver a message."""


class EmailProvider:
    """Base provider for outbound email delivery."""

    name = "base"

    def __init__(self, *, from_email: str) -> None:
        self.from_email = from_email

    def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
        *,
        tags: Optional[Dict[str, str]] = None,
    ) -> Optional[str]:
        """Send one message and return the provider message id when available."""
        raise NotImplementedError

    def describe(self) -> Dict[str, str]:
        return {"email_provider": self.name, "email_sender": self.from_email}


class DevPrintProvider(EmailProvider):
    """Development provider that logs messages instead of sending them."""

    name = "dev"

    def __init__(self, *, from_email: str) -> None:
        super().__init__(from_email=from_email)
        self.outbox: list[Dict[str, str]] = []

    def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
        *,
        tags: Optional[Dict[str, str]] = None,
    ) -> Optional[str]:
        message_id = f"dev-{len(self.outbox) + 1}"
        self.outbox.append({"id": message_id, "to": to, "subject": subject, "text": text_body})
        logger.info(
            "Dev email dispatch",
            extra={
                "email_recipient": to,
                "email_subject": subject,
                "email_sender": self.from_email,
            },
        )
        return message_id


class SMTPProvider(EmailProvider):
    """Simple SMTP-based provider."""

    name = "smtp"

    def __init__(
        self,
        *,
        from_email: str,
        host: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        use_tls: bool,
        timeout: float = 5.0,
    ) -> None:
        super().__init__(from_email=from_email)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def _build_message(self, to: str, subject: str, html_body: str, text_body: str) -> str:
        message = MIMEMultipart("alternative")
        message["From"] = self.from_email
        message["To"] = to
        message["Subject"] = subject
        message.attach(MIMEText(text_body, "plain", "utf-8"))
        message.attach(MIMEText(html_body, "html", "utf-8"))
        return message.as_string()

    def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
        *,
        tags: Optional[Dict[str, str]] = None,
    ) -> Optional[str]:
        payload = self._build_message(to, subject, html_body, text_body)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as client:
            if self.use_tls:
                client.starttls()
            if self.username and self.password:
                client.login(self.username, self.password)
            client.sendmail(self.from_email, [to], payload)
        return None


class ResendProvider(EmailProvider):
    """Transactional email through the Resend HTTP API."""

    name = "resend"

    def __init__(
        self,
        *,
        from_email: str,
        api_key: str,
        base_url: str = "https://api.resend.com",
        timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if not api_key or not api_key.strip():
            raise ValueError("Resend API key is not configured")
        super().__init__(from_email=from_email)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _tag_list(self, tags: Optional[Dict[str, str]]) -> Sequence[Dict[str, str]]:
        return [{"name": key, "value": value} for key, value in (tags or {}).items()]

    def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
        *,
        tags: Optional[Dict[str, str]] = None,
    ) -> Optional[str]:
        body = {
            "from": self.from_email,
            "to": [to],
            "subject": subject,
            "html": html_body,
            "text": text_body,
            "tags": list(self._tag_list(tags)),
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        with httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self._transport) as client:
            try:
                response = client.post("/emails", json=body, headers=headers)
            except httpx.HTTPError as exc:
                raise EmailDeliveryError(f"Resend request failed: {exc}") from exc

        if response.status_code >= 400:
            raise EmailDeliveryError(
                f"Resend rejected message with status {response.status_code}: {response.text[:200]}"
            )
        data = response.json() if response.content else {}
        return data.get("id") if isinstance(data, dict) else None


def create_email_provider(config: EmailConfig) -> EmailProvider:
    provider = (config.provider_name or "resend").strip().lower()
    if provider == "smtp":
        return SMTPProvider(
            from_email=config.from_email,
            host=config.smtp_host,
            port=config.smtp_port,
            username=config.smtp_username,
            password=config.smtp_password,
            use_tls=config.smtp_use_tls,
            timeout=config.timeout_seconds,
        )
    if provider == "dev":
        return DevPrintProvider(from_email=config.from_email)
    return ResendProvider(
        from_email=config.from_email,
        api_key=config.resend_api_key or "",
        base_url=config.resend_api_url,
        timeout=config.timeout_seconds,
    )


__all__ = [
    "DevPrintProvider",
    "EmailDeliveryError",
    "EmailProvider",
    "ResendProvider",
    "SMTPProvider",
    "create_email_provider",
]
