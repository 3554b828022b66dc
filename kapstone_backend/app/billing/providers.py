"""Payment provider integrations."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

import stripe

from .models import PaymentMethod
from .service import PaymentProvider, PaymentProviderError

logger = logging.getLogger(__name__)


def _field(obj: Any, name: str) -> Any:
    """Read a field from a Stripe object or a plain dict."""

    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    try:
        return obj[name]
    except (KeyError, TypeError):
        return getattr(obj, name, None)


def _object_id(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return _field(value, "id")


class StripePaymentProvider(PaymentProvider):
    """Subscription checkout backed by the Stripe API."""

    def __init__(
        self,
        api_key: str,
        *,
        timeout_seconds: float = 8.0,
        max_network_retries: int = 1,
    ) -> None:
        if not api_key:
            raise ValueError("Stripe API key is required")
        self._api_key = api_key
        stripe.max_network_retries = max_network_retries
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout_seconds)

    def create_checkout_session(
        self,
        *,
        price_id: str,
        customer_email: str,
        client_reference_id: str,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
        payment_method: str = PaymentMethod.CARD.value,
    ) -> Dict[str, object]:
        try:
            session = stripe.checkout.Session.create(
                api_key=self._api_key,
                mode="subscription",
                payment_method_types=[payment_method],
                line_items=[{"price": price_id, "quantity": 1}],
                customer_email=customer_email,
                client_reference_id=client_reference_id,
                metadata=metadata,
                subscription_data={"metadata": dict(metadata)},
                success_url=success_url,
                cancel_url=cancel_url,
            )
        except stripe.StripeError as exc:
            logger.error("Stripe error creating checkout session for user %s: %s", client_reference_id, exc)
            raise PaymentProviderError("Unable to create checkout session") from exc

        return {
            "id": _field(session, "id"),
            "url": _field(session, "url"),
            "expires_at": _field(session, "expires_at"),
        }

    def retrieve_checkout_session(self, session_id: str) -> Dict[str, object]:
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self._api_key)
        except stripe.StripeError as exc:
            logger.error("Stripe error retrieving checkout session %s: %s", session_id, exc)
            raise PaymentProviderError("Unable to retrieve checkout session") from exc

        return {
            "id": _field(session, "id"),
            "status": _field(session, "status"),
            "payment_status": _field(session, "payment_status"),
            "subscription": _object_id(_field(session, "subscription")),
            "customer": _object_id(_field(session, "customer")),
        }

    def retrieve_customer_email(self, customer_id: str) -> Optional[str]:
        try:
            customer = stripe.Customer.retrieve(customer_id, api_key=self._api_key)
        except stripe.StripeError as exc:
            logger.error("Stripe error retrieving customer %s: %s", customer_id, exc)
            raise PaymentProviderError("Unable to retrieve customer") from exc

        if _field(customer, "deleted"):
            return None
        return _field(customer, "email") or None


class LocalSandboxPaymentProvider(PaymentProvider):
    """Minimal provider implementation for local development and tests."""

    def __init__(self) -> None:
        self.sessions: Dict[str, Dict[str, object]] = {}
        self.customers: Dict[str, str] = {}
        self.requests: List[Dict[str, object]] = []

    def create_checkout_session(
        self,
        *,
        price_id: str,
        customer_email: str,
        client_reference_id: str,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
        payment_method: str = PaymentMethod.CARD.value,
    ) -> Dict[str, object]:
        session_id = f"cs_{uuid4().hex}"
        expires_at = datetime.now(timezone.utc) + timedelta(minutes=30)
        session = {
            "id": session_id,
            "url": f"https://billing.local/checkout/{session_id}",
            "expires_at": expires_at,
            "status": "open",
            "payment_status": "unpaid",
            "subscription": None,
        }
        self.sessions[session_id] = session
        self.requests.append(
            {
                "price_id": price_id,
                "customer_email": customer_email,
                "client_reference_id": client_reference_id,
                "metadata": dict(metadata),
                "success_url": success_url,
                "cancel_url": cancel_url,
                "payment_method": payment_method,
            }
        )
        return dict(session)

    def retrieve_checkout_session(self, session_id: str) -> Dict[str, object]:
        session = self.sessions.get(session_id)
        if session is None:
            raise PaymentProviderError(f"Unknown checkout session {session_id}")
        return dict(session)

    def retrieve_customer_email(self, customer_id: str) -> Optional[str]:
        return self.customers.get(customer_id)


__all__ = ["LocalSandboxPaymentProvider", "StripePaymentProvider"]
