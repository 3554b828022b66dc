"""API schemas for billing endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing import CheckoutSession, CheckoutVerification, PlanDefinition, PlanInterval, ReconciliationOutcome


class CheckoutSessionRequest(BaseModel):
    price_id: str = Field(alias="priceId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)
    membership_type: Optional[str] = Field(alias="membershipType", default=None)
    payment_method: Optional[str] = Field(alias="paymentMethod", default=None)

    model_config = ConfigDict(populate_by_name=True)


class CheckoutSessionResponse(BaseModel):
    url: str
    session_id: str = Field(alias="sessionId")
    expires_at: Optional[datetime] = Field(alias="expiresAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_checkout(cls, session: CheckoutSession) -> "CheckoutSessionResponse":
        return cls(url=session.url, session_id=session.session_id, expires_at=session.expires_at)


class CheckoutVerificationResponse(BaseModel):
    session_id: str = Field(alias="sessionId")
    paid: bool
    status: Optional[str] = None
    subscription_id: Optional[str] = Field(alias="subscriptionId", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_verification(cls, verification: CheckoutVerification) -> "CheckoutVerificationResponse":
        return cls(
            session_id=verification.session_id,
            paid=verification.paid,
            status=verification.status,
            subscription_id=verification.subscription_id,
        )


class PlanResponse(BaseModel):
    interval: PlanInterval
    name: str
    price_id: str = Field(alias="priceId")
    amount_cents: int = Field(alias="amountCents")
    period: str
    features: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_plan(cls, plan: PlanDefinition) -> "PlanResponse":
        return cls(
            interval=plan.interval,
            name=plan.display_name,
            price_id=plan.price_id,
            amount_cents=plan.amount_cents,
            period=plan.period,
            features=list(plan.features),
        )


class WebhookAck(BaseModel):
    received: bool = True
    outcome: Optional[ReconciliationOutcome] = None


__all__ = [
    "CheckoutSessionRequest",
    "CheckoutSessionResponse",
    "CheckoutVerificationResponse",
    "PlanResponse",
    "WebhookAck",
]
