"""Webhook signature verification and event parsing.

Signatures are checked by the Stripe SDK against the exact bytes received;
the verified body is then parsed into a :class:`BillingWebhookEvent`.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Dict, Optional

import stripe

from .models import BillingWebhookEvent

SIGNATURE_HEADER = "Stripe-Signature"
DEFAULT_TOLERANCE_SECONDS = 300

SignatureVerificationError = stripe.SignatureVerificationError


class MalformedEventError(ValueError):
    """Raised when a verified payload is not a usable event envelope."""


def verify_signature(
    raw_body: bytes,
    header: Optional[str],
    secret: str,
    *,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
) -> None:
    """Raise :class:`stripe.SignatureVerificationError` unless ``header`` signs ``raw_body``.

    The error message names the cause (missing header, unparsable header, no
    matching signature, or a timestamp outside ``tolerance``).
    """

    if not header or not header.strip():
        raise SignatureVerificationError("No signature header", header, raw_body)
    try:
        payload = raw_body.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise SignatureVerificationError("Payload is not UTF-8", header, raw_body) from exc

    stripe.WebhookSignature.verify_header(payload, header, secret, tolerance=tolerance)


def parse_event(raw_body: bytes) -> BillingWebhookEvent:
    """Parse a verified envelope ``{id, type, created, data: {object}}``."""

    try:
        envelope = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedEventError("payload is not valid JSON") from exc

    if not isinstance(envelope, dict):
        raise MalformedEventError("payload must be a JSON object")

    event_id = envelope.get("id")
    event_type = envelope.get("type")
    if not isinstance(event_id, str) or not event_id:
        raise MalformedEventError("event id missing")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedEventError("event type missing")

    created = envelope.get("created")
    if isinstance(created, bool) or not isinstance(created, (int, float)):
        raise MalformedEventError("event creation timestamp missing")

    data = envelope.get("data")
    if not isinstance(data, dict) or not isinstance(data.get("object"), dict):
        raise MalformedEventError("data.object missing")
    payload: Dict[str, object] = data["object"]

    return BillingWebhookEvent(
        event_id=event_id,
        event_type=event_type,
        payload=payload,
        occurred_at=datetime.fromtimestamp(float(created), tz=timezone.utc),
        livemode=bool(envelope.get("livemode", False)),
    )


def construct_event(
    raw_body: bytes,
    header: Optional[str],
    secret: str,
    *,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
) -> BillingWebhookEvent:
    """Verify the signature, then parse the body into a typed event."""

    verify_signature(raw_body, header, secret, tolerance=tolerance)
    return parse_event(raw_body)


__all__ = [
    "DEFAULT_TOLERANCE_SECONDS",
    "MalformedEventError",
    "SIGNATURE_HEADER",
    "SignatureVerificationError",
    "construct_event",
    "parse_event",
    "verify_signature",
]
