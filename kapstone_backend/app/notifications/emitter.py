"""Turns notification requests into exactly one logged email send."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol, Tuple

from ..billing.models import NotificationRequest
from ..billing.service import BillingNotifier
from .models import Notification, NotificationStatus

logger = logging.getLogger(__name__)

BOUNCED_RECIPIENT_ERROR = "Email address has previously bounced"


class NotificationLog(Protocol):
    def is_suppressed(self, recipient: str) -> bool:
        """``True`` when ``recipient`` has a recorded hard bounce."""

    def record_bounce(self, recipient: str, reason: str) -> None:
        ...

    def claim(self, notification: Notification) -> bool:
        ...

    def mark_sent(self, dedupe_key: str, provider_message_id: Optional[str]) -> None:
        ...

    def mark_error(self, dedupe_key: str, error_message: str) -> None:
        ...


class TemplateRenderer(Protocol):
    def render_subject_body(self, base_template: str, context: Dict[str, Any]) -> Tuple[str, str, str]:
        ...


class EmailSender(Protocol):
    def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
        *,
        tags: Optional[Dict[str, str]] = None,
    ) -> Optional[str]:
        ...


class NotificationEmitter(BillingNotifier):
    """Renders, deduplicates, sends and records billing emails.

    Delivery failures are recorded on the log row and logged; they never
    propagate, so an email outage cannot undo a reconciled transition.
    """

    def __init__(self, *, log: NotificationLog, sender: EmailSender, renderer: TemplateRenderer) -> None:
        self._log = log
        self._sender = sender
        self._renderer = renderer

    def notify(self, request: NotificationRequest) -> Optional[Notification]:
        template = request.kind.value
        subject, text_body, html_body = self._renderer.render_subject_body(template, dict(request.metadata))

        notification = Notification(
            recipient=request.recipient,
            template=template,
            subject=subject,
            dedupe_key=request.dedupe_key,
            metadata=dict(request.metadata),
        )
        if not self._log.claim(notification):
            logger.info("Skipping duplicate notification %s", request.dedupe_key)
            return None

        if self._log.is_suppressed(request.recipient):
            logger.warning(
                "Email %s to %s suppressed after a previous bounce",
                template,
                request.recipient,
                extra={"email_dedupe_key": request.dedupe_key},
            )
            self._log.mark_error(request.dedupe_key, BOUNCED_RECIPIENT_ERROR)
            return notification.model_copy(
                update={"status": NotificationStatus.ERROR, "error_message": BOUNCED_RECIPIENT_ERROR}
            )

        try:
            message_id = self._sender.send_email(
                request.recipient,
                subject,
                html_body,
                text_body,
                tags={"template": template},
            )
        except Exception as exc:
            logger.exception(
                "Email %s to %s failed",
                template,
                request.recipient,
                extra={"email_dedupe_key": request.dedupe_key},
            )
            self._log.mark_error(request.dedupe_key, str(exc) or exc.__class__.__name__)
            if "bounce" in str(exc).lower():
                self._log.record_bounce(request.recipient, str(exc))
            return notification.model_copy(
                update={"status": NotificationStatus.ERROR, "error_message": str(exc)}
            )

        self._log.mark_sent(request.dedupe_key, message_id)
        logger.info(
            "Email %s sent to %s",
            template,
            request.recipient,
            extra={"email_dedupe_key": request.dedupe_key, "email_message_id": message_id},
        )
        return notification.model_copy(
            update={"status": NotificationStatus.SENT, "provider_message_id": message_id}
        )


__all__ = ["BOUNCED_RECIPIENT_ERROR", "EmailSender", "NotificationEmitter", "NotificationLog", "TemplateRenderer"]
