"""Domain models for membership billing and subscription reconciliation."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemberRole(str, Enum):
    """Application roles stored on the ``users`` table."""

    UNAUTHENTICATED = "unauthenticated"
    PATIENT = "patient"
    PROFESSIONAL = "professional"
    CLINIC_ADMIN = "clinic_admin"
    SUPER_ADMIN = "super_admin"


# Roles that exist only while a membership is paid for.
PAID_ROLES = frozenset({MemberRole.CLINIC_ADMIN})
BASE_MEMBER_ROLE = MemberRole.PROFESSIONAL


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle states tracked for each member."""

    NONE = "none"
    PENDING = "pending"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class PlanInterval(str, Enum):
    """Billing intervals offered on the payment plan page."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class MembershipType(str, Enum):
    """Membership tiers selectable at checkout."""

    CLINIC = "clinic"
    SOLO = "solo"
    AFFILIATE = "affiliate"


class PaymentMethod(str, Enum):
    """Payment method types offered on the hosted checkout page."""

    CARD = "card"
    US_BANK_ACCOUNT = "us_bank_account"


class BillingWebhookEventType(str, Enum):
    """Provider webhook event types that the reconciler reacts to."""

    CHECKOUT_COMPLETED = "checkout.session.completed"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"


class ReconciliationOutcome(str, Enum):
    """How a webhook event was handled."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    SUPERSEDED = "superseded"
    UNRESOLVED = "unresolved"
    IGNORED = "ignored"


class NotificationKind(str, Enum):
    """Transactional email templates triggered by billing transitions."""

    MEMBERSHIP_WELCOME = "membership_welcome"
    SUBSCRIPTION_PAST_DUE = "subscription_past_due"
    SUBSCRIPTION_CANCELED = "subscription_canceled"


class MemberAccount(BaseModel):
    """Application account tied to an authentication identity."""

    user_id: str
    auth_id: Optional[str] = None
    email: str
    role: MemberRole = MemberRole.PATIENT
    full_name: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    subscription_status: SubscriptionStatus = SubscriptionStatus.NONE
    subscription_updated_at: Optional[datetime] = None
    subscription_ended_at: Optional[datetime] = None
    subscription_event_at: Optional[datetime] = Field(
        default=None,
        description="Provider timestamp of the last applied subscription transition",
    )

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def display_name(self) -> str:
        return (self.full_name or "").strip() or "Member"


def is_stale_transition(
    stored_at: Optional[datetime],
    stored_status: SubscriptionStatus,
    incoming_at: datetime,
) -> bool:
    """Return ``True`` when an incoming transition is older than the stored state.

    Equal timestamps are accepted except on top of a cancellation.
    """

    if stored_at is None:
        return False
    if incoming_at > stored_at:
        return False
    if incoming_at == stored_at:
        return stored_status == SubscriptionStatus.CANCELED
    return True


class SubscriptionTransition(BaseModel):
    """A single state change requested by a reconciled webhook event."""

    status: SubscriptionStatus
    grant_role: Optional[MemberRole] = None
    downgrade_role: bool = False
    subscription_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    ended: bool = False
    switches_subscription: bool = Field(
        default=False,
        description="Checkout completions may replace the member's recorded subscription",
    )

    model_config = ConfigDict(frozen=True)

    def resolve_role(self, current: MemberRole) -> MemberRole:
        if current == MemberRole.SUPER_ADMIN:
            return current
        if self.downgrade_role:
            return BASE_MEMBER_ROLE if current in PAID_ROLES else current
        if self.grant_role is not None:
            return self.grant_role
        return current

    def targets_other_subscription(self, account: MemberAccount) -> bool:
        """``True`` when the member already holds a different subscription than this event."""

        if self.switches_subscription:
            return False
        return bool(
            account.subscription_id
            and self.subscription_id
            and account.subscription_id != self.subscription_id
        )

    def _attaches_late(self, account: MemberAccount) -> bool:
        return (
            self.switches_subscription
            and account.subscription_status != SubscriptionStatus.CANCELED
            and account.subscription_id in (None, self.subscription_id)
        )

    def apply_to(
        self,
        account: MemberAccount,
        occurred_at: datetime,
        *,
        now: Optional[datetime] = None,
    ) -> Optional[MemberAccount]:
        """Return the updated account, or ``None`` when the transition must not be written.

        A checkout completion that arrives behind a newer event for the same
        subscription still grants its role and ids; status and the event clock
        stay with the newer event.
        """

        if self.targets_other_subscription(account):
            return None

        timestamp = now or _utcnow()
        if is_stale_transition(account.subscription_event_at, account.subscription_status, occurred_at):
            if not self._attaches_late(account):
                return None
            update: Dict[str, object] = {
                "role": self.resolve_role(account.role),
                "subscription_updated_at": timestamp,
            }
        else:
            update = {
                "role": self.resolve_role(account.role),
                "subscription_status": self.status,
                "subscription_updated_at": timestamp,
                "subscription_event_at": occurred_at,
            }
            if self.ended:
                update["subscription_ended_at"] = timestamp
            elif self.status == SubscriptionStatus.ACTIVE:
                update["subscription_ended_at"] = None

        if self.subscription_id:
            update["subscription_id"] = self.subscription_id
        if self.stripe_customer_id:
            update["stripe_customer_id"] = self.stripe_customer_id
        return account.model_copy(update=update)


class TransitionResult(BaseModel):
    """Account state before and after a written transition."""

    account: MemberAccount
    previous_status: SubscriptionStatus
    late: bool = Field(
        default=False,
        description="Written behind a newer event; status and event clock were kept",
    )

    model_config = ConfigDict(frozen=True)


class CheckoutSession(BaseModel):
    """Provider checkout session created for a member."""

    session_id: str
    url: str
    price_id: str
    user_id: str
    plan: Optional[PlanInterval] = None
    membership_type: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.CARD
    expires_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class CheckoutVerification(BaseModel):
    """Read-only view of a checkout session for the success page."""

    session_id: str
    paid: bool
    status: Optional[str] = None
    subscription_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class BillingWebhookEvent(BaseModel):
    """Verified webhook payload, normalized for dispatch."""

    event_id: str
    event_type: str
    payload: Dict[str, object] = Field(description="The event's ``data.object``")
    occurred_at: datetime = Field(description="Provider-reported creation time")
    received_at: datetime = Field(default_factory=_utcnow)
    livemode: bool = False

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def known_type(self) -> Optional[BillingWebhookEventType]:
        try:
            return BillingWebhookEventType(self.event_type)
        except ValueError:
            return None


class NotificationRequest(BaseModel):
    """An outbound email requested by a reconciled transition."""

    recipient: str
    kind: NotificationKind
    metadata: Dict[str, str] = Field(default_factory=dict)
    dedupe_key: str

    model_config = ConfigDict(frozen=True)


class ReconciliationResult(BaseModel):
    """Outcome of dispatching one webhook event."""

    event_id: str
    event_type: str
    outcome: ReconciliationOutcome
    user_id: Optional[str] = None
    previous_status: Optional[SubscriptionStatus] = None
    status: Optional[SubscriptionStatus] = None
    notifications: List[NotificationRequest] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class BillingAuditEventType(str, Enum):
    """Audit event categories emitted by the billing subsystem."""

    SUBSCRIPTION_ACTIVATED = "subscription_activated"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_RECOVERED = "payment_recovered"
    RESOLUTION_FAILED = "resolution_failed"
    STALE_EVENT_SKIPPED = "stale_event_skipped"
    SUPERSEDED_EVENT_SKIPPED = "superseded_event_skipped"


class BillingAuditEvent(BaseModel):
    """Structured audit event for operators."""

    event_type: BillingAuditEventType
    webhook_event_id: Optional[str] = None
    subscription_id: Optional[str] = None
    actor_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)
