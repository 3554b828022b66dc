"""Client used by the payment plan page to start a hosted checkout."""
from __future__ import annotations

import logging
from typing import Callable, Optional, Union

import httpx

from .catalog import PlanCatalog
from .models import MemberAccount, PaymentMethod, PlanInterval

logger = logging.getLogger(__name__)

CHECKOUT_SESSION_PATH = "/api/billing/checkout-session"


class LoginRequiredError(RuntimeError):
    """Raised when checkout is attempted without a signed-in member."""

    def __init__(self) -> None:
        super().__init__("Please log in to choose a payment plan")


class CheckoutError(RuntimeError):
    """Raised when the backend could not create a checkout session."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CheckoutInitiator:
    """Asks the backend for a checkout session and hands the redirect URL to ``navigate``.

    Nothing about the member's subscription changes here; the webhook path
    owns every state transition.
    """

    def __init__(
        self,
        base_url: str,
        catalog: PlanCatalog,
        *,
        navigate: Optional[Callable[[str], None]] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._catalog = catalog
        self._navigate = navigate
        self._client = httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def start_checkout(
        self,
        plan: Union[PlanInterval, str],
        user: Optional[MemberAccount],
        *,
        access_token: Optional[str] = None,
        membership_type: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> str:
        if user is None:
            raise LoginRequiredError()

        price_id = self._catalog.get(PlanInterval(plan)).price_id
        body = {"priceId": price_id, "userId": user.user_id}
        if membership_type:
            body["membershipType"] = membership_type
        if payment_method:
            body["paymentMethod"] = PaymentMethod(payment_method).value
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else {}

        try:
            response = self._client.post(CHECKOUT_SESSION_PATH, json=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Checkout request for user %s failed: %s", user.user_id, exc)
            raise CheckoutError("Unable to reach the checkout service") from exc

        if response.status_code >= 300:
            message = _error_message(response) or "Unable to start checkout"
            logger.warning(
                "Checkout request for user %s rejected status=%s message=%s",
                user.user_id,
                response.status_code,
                message,
            )
            raise CheckoutError(message, status_code=response.status_code)

        try:
            url = response.json().get("url")
        except (ValueError, AttributeError):
            url = None
        if not url:
            raise CheckoutError("Checkout service returned no redirect URL", status_code=response.status_code)

        if self._navigate is not None:
            self._navigate(url)
        return url


def _error_message(response: httpx.Response) -> Optional[str]:
    try:
        payload = response.json()
    except ValueError:
        return response.text or None
    if isinstance(payload, dict):
        detail = payload.get("error") or payload.get("detail")
        if detail:
            return str(detail)
    return None


__all__ = ["CHECKOUT_SESSION_PATH", "CheckoutError", "CheckoutInitiator", "LoginRequiredError"]
