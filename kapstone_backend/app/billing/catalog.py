"""Static catalog of payment plans and membership role mappings."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple

from .models import MemberRole, MembershipType, PlanInterval, SubscriptionStatus

logger = logging.getLogger(__name__)


class UnknownPlanError(ValueError):
    """Raised when a price or plan is not part of the catalog."""


@dataclass(frozen=True)
class PlanDefinition:
    """Describes one purchasable plan on the payment plan page."""

    interval: PlanInterval
    display_name: str
    price_id: str
    amount_cents: int
    period: str
    features: Tuple[str, ...] = ()


_PLAN_DETAILS: Dict[PlanInterval, Tuple[str, int, str, Tuple[str, ...]]] = {
    PlanInterval.WEEKLY: (
        "Weekly",
        999,
        "week",
        ("Member hub access", "Clinic directory listing", "Community forum"),
    ),
    PlanInterval.MONTHLY: (
        "Monthly",
        2999,
        "month",
        ("Everything in Weekly", "Referral network", "Case report library"),
    ),
    PlanInterval.YEARLY: (
        "Yearly",
        24999,
        "year",
        ("Everything in Monthly", "Priority listing", "Dedicated support"),
    ),
}


class PlanCatalog:
    """Closed mapping between plan intervals and provider price identifiers."""

    def __init__(self, price_ids: Mapping[PlanInterval, str]) -> None:
        missing = [interval.value for interval in PlanInterval if not price_ids.get(interval)]
        if missing:
            raise UnknownPlanError(f"Price ids missing for plans: {', '.join(missing)}")
        self._plans: Dict[PlanInterval, PlanDefinition] = {}
        for interval, (name, amount, period, features) in _PLAN_DETAILS.items():
            self._plans[interval] = PlanDefinition(
                interval=interval,
                display_name=name,
                price_id=price_ids[interval],
                amount_cents=amount,
                period=period,
                features=features,
            )
        self._by_price = {plan.price_id: plan for plan in self._plans.values()}

    def plans(self) -> Tuple[PlanDefinition, ...]:
        return tuple(self._plans[interval] for interval in PlanInterval)

    def get(self, interval: PlanInterval) -> PlanDefinition:
        return self._plans[interval]

    def by_price_id(self, price_id: str) -> PlanDefinition:
        plan = self._by_price.get(price_id)
        if plan is None:
            raise UnknownPlanError(f"Unknown price id {price_id!r}")
        return plan


_MEMBERSHIP_ROLES: Dict[str, MemberRole] = {
    MembershipType.CLINIC.value: MemberRole.CLINIC_ADMIN,
    MembershipType.SOLO.value: MemberRole.CLINIC_ADMIN,
    MembershipType.AFFILIATE.value: MemberRole.PROFESSIONAL,
    MemberRole.CLINIC_ADMIN.value: MemberRole.CLINIC_ADMIN,
    MemberRole.PROFESSIONAL.value: MemberRole.PROFESSIONAL,
}


def role_for_membership(value: Optional[object]) -> Optional[MemberRole]:
    """Map a checkout ``membershipType`` hint to the role it grants.

    Returns ``None`` for missing or unrecognized values; callers keep the
    member's current role in that case.
    """

    if value is None:
        return None
    key = str(value).strip().lower()
    if not key:
        return None
    role = _MEMBERSHIP_ROLES.get(key)
    if role is None:
        logger.warning("Unrecognized membership type %r in checkout metadata", value)
    return role


_PROVIDER_STATUSES: Dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "incomplete": SubscriptionStatus.PENDING,
}


def map_provider_status(value: Optional[object]) -> Optional[SubscriptionStatus]:
    """Translate a provider subscription status, or ``None`` if unrecognized."""

    if value is None:
        return None
    return _PROVIDER_STATUSES.get(str(value).strip().lower())


__all__ = [
    "PlanCatalog",
    "PlanDefinition",
    "UnknownPlanError",
    "map_provider_status",
    "role_for_membership",
]
