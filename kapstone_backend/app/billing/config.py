"""Billing configuration helpers."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from ...config import ConfigurationError, require, to_float, to_int
from .catalog import PlanCatalog
from .models import PlanInterval


SUPPORTED_PAYMENT_PROVIDERS = ("stripe", "sandbox")
_PRICE_ENV = {
    PlanInterval.WEEKLY: "STRIPE_PRICE_WEEKLY",
    PlanInterval.MONTHLY: "STRIPE_PRICE_MONTHLY",
    PlanInterval.YEARLY: "STRIPE_PRICE_YEARLY",
}


@dataclass(frozen=True)
class BillingConfig:
    """Configuration for the payment provider integration."""

    webhook_secret: str
    stripe_api_key: str
    price_ids: Dict[PlanInterval, str] = field(default_factory=dict)
    signature_tolerance_seconds: int = 300
    webhook_claim_ttl_seconds: int = 300
    stripe_timeout_seconds: float = 8.0
    stripe_max_network_retries: int = 1
    success_url: str = "http://localhost:5173/checkout/success?session_id={CHECKOUT_SESSION_ID}"
    cancel_url: str = "http://localhost:5173/checkout/cancel"
    provider_name: str = "stripe"

    def catalog(self) -> PlanCatalog:
        return PlanCatalog(self.price_ids)


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    provider_name = (env_mapping.get("BILLING_PROVIDER") or "stripe").strip().lower()
    if provider_name not in SUPPORTED_PAYMENT_PROVIDERS:
        raise ConfigurationError(f"Unsupported BILLING_PROVIDER {provider_name!r}")

    required = ["STRIPE_WEBHOOK_SECRET", "STRIPE_SECRET_KEY"]
    if provider_name == "stripe":
        required.extend(_PRICE_ENV.values())
    values = dict(zip(required, require(env_mapping, *required)))

    # Sandbox checkouts accept any price id.
    price_ids = {
        interval: values.get(name) or (env_mapping.get(name) or "").strip() or f"price_{interval.value}"
        for interval, name in _PRICE_ENV.items()
    }
    app_base_url = (env_mapping.get("APP_BASE_URL") or "http://localhost:5173").rstrip("/")

    return BillingConfig(
        webhook_secret=values["STRIPE_WEBHOOK_SECRET"],
        stripe_api_key=values["STRIPE_SECRET_KEY"],
        price_ids=price_ids,
        signature_tolerance_seconds=max(1, to_int(env_mapping.get("STRIPE_WEBHOOK_TOLERANCE"), default=300)),
        webhook_claim_ttl_seconds=max(1, to_int(env_mapping.get("BILLING_WEBHOOK_CLAIM_TTL"), default=300)),
        stripe_timeout_seconds=max(0.5, to_float(env_mapping.get("STRIPE_TIMEOUT_SECONDS"), default=8.0)),
        stripe_max_network_retries=max(0, to_int(env_mapping.get("STRIPE_MAX_NETWORK_RETRIES"), default=1)),
        success_url=env_mapping.get(
            "CHECKOUT_SUCCESS_URL",
            f"{app_base_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
        ),
        cancel_url=env_mapping.get("CHECKOUT_CANCEL_URL", f"{app_base_url}/checkout/cancel"),
        provider_name=provider_name,
    )


__all__ = ["BillingConfig", "SUPPORTED_PAYMENT_PROVIDERS", "load_billing_config"]
