"""Core service coordinating checkout and webhook reconciliation."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Protocol

from .catalog import PlanCatalog, map_provider_status, role_for_membership
from .models import (
    BillingAuditEvent,
    BillingAuditEventType,
    BillingWebhookEvent,
    BillingWebhookEventType,
    CheckoutSession,
    CheckoutVerification,
    MemberAccount,
    MembershipType,
    NotificationKind,
    PaymentMethod,
    NotificationRequest,
    ReconciliationOutcome,
    ReconciliationResult,
    SubscriptionStatus,
    SubscriptionTransition,
    TransitionResult,
)

logger = logging.getLogger(__name__)


class PaymentProviderError(RuntimeError):
    """Raised when the payment provider cannot complete a request."""


class PaymentProvider(Protocol):
    """External payment processor integration."""

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
        """Create a provider checkout session."""

    def retrieve_checkout_session(self, session_id: str) -> Dict[str, object]:
        """Fetch a checkout session by id."""

    def retrieve_customer_email(self, customer_id: str) -> Optional[str]:
        """Return the email on the provider's customer record."""


class BillingNotifier(Protocol):
    """Sends transactional email for reconciled transitions."""

    def notify(self, request: NotificationRequest) -> None:
        ...


class BillingEventLogger(Protocol):
    """Captures structured billing audit events."""

    def log(self, event: BillingAuditEvent) -> None:
        ...


class BillingRepository(Protocol):
    """Persistence operations required by the billing service."""

    def get_user(self, user_id: str) -> Optional[MemberAccount]:
        ...

    def find_user_by_email(self, email: str) -> Optional[MemberAccount]:
        ...

    def find_user_by_customer_id(self, customer_id: str) -> Optional[MemberAccount]:
        ...

    def find_user_by_subscription_id(self, subscription_id: str) -> Optional[MemberAccount]:
        ...

    def apply_subscription_transition(
        self,
        user_id: str,
        transition: SubscriptionTransition,
        occurred_at: datetime,
    ) -> Optional[TransitionResult]:
        """Atomically apply ``transition``; ``None`` when it is older than stored state."""

    def claim_webhook_event(self, event: BillingWebhookEvent, *, claim_ttl_seconds: int) -> bool:
        """Return ``True`` if this caller now owns processing of ``event``."""

    def release_webhook_event(self, event_id: str) -> None:
        ...

    def complete_webhook_event(self, event_id: str, outcome: ReconciliationOutcome) -> None:
        ...


@dataclass
class BillingService:
    """Coordinates checkout sessions, webhook reconciliation, and notifications."""

    repository: BillingRepository
    provider: PaymentProvider
    notifier: BillingNotifier
    event_logger: BillingEventLogger
    catalog: PlanCatalog
    success_url: str
    cancel_url: str
    app_base_url: str = "http://localhost:5173"
    claim_ttl_seconds: int = 300

    # Checkout

    def create_checkout_session(
        self,
        *,
        user: MemberAccount,
        price_id: str,
        membership_type: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> CheckoutSession:
        plan = self.catalog.by_price_id(price_id)
        membership = MembershipType(membership_type) if membership_type else None
        method = PaymentMethod(payment_method) if payment_method else PaymentMethod.CARD

        metadata = {
            "priceId": plan.price_id,
            "plan": plan.interval.value,
            "userId": user.user_id,
            "email": user.email,
            "name": user.display_name,
            "paymentMethod": method.value,
        }
        if membership is not None:
            metadata["membershipType"] = membership.value

        session = self.provider.create_checkout_session(
            price_id=plan.price_id,
            customer_email=user.email,
            client_reference_id=user.user_id,
            metadata=metadata,
            success_url=self.success_url,
            cancel_url=self.cancel_url,
            payment_method=method.value,
        )
        session_id = str(session.get("id") or "")
        url = str(session.get("url") or "")
        if not session_id or not url:
            raise PaymentProviderError("Payment provider returned an incomplete checkout session")

        logger.info(
            "Checkout session %s created for user %s plan=%s method=%s",
            session_id,
            user.user_id,
            plan.interval.value,
            method.value,
        )
        return CheckoutSession(
            session_id=session_id,
            url=url,
            price_id=plan.price_id,
            user_id=user.user_id,
            plan=plan.interval,
            membership_type=membership.value if membership else None,
            payment_method=method,
            expires_at=_parse_timestamp(session.get("expires_at")),
        )

    def verify_checkout_session(self, session_id: str) -> CheckoutVerification:
        session = self.provider.retrieve_checkout_session(session_id)
        payment_status = _str_or_none(session.get("payment_status"))
        return CheckoutVerification(
            session_id=session_id,
            paid=payment_status in {"paid", "no_payment_required"},
            status=_str_or_none(session.get("status")),
            subscription_id=_object_id(session.get("subscription")),
        )

    # Webhooks

    def handle_webhook(self, event: BillingWebhookEvent) -> ReconciliationResult:
        """Apply one verified event at most once.

        Raises on storage or provider failures so the caller can ask the
        provider to redeliver; the claim on the event id is released first.
        """

        event_type = event.known_type
        if event_type is None:
            logger.info("Ignoring unhandled webhook event %s type=%s", event.event_id, event.event_type)
            return self._result(event, ReconciliationOutcome.IGNORED)

        if not self.repository.claim_webhook_event(event, claim_ttl_seconds=self.claim_ttl_seconds):
            logger.info("Skipping duplicate webhook event %s type=%s", event.event_id, event.event_type)
            return self._result(event, ReconciliationOutcome.DUPLICATE)

        try:
            result = self._dispatch(event_type, event)
        except Exception:
            self.repository.release_webhook_event(event.event_id)
            raise

        self.repository.complete_webhook_event(event.event_id, result.outcome)
        return result

    def dispatch_notifications(self, result: ReconciliationResult) -> int:
        """Send the notifications of ``result``; failures are logged, never raised."""

        sent = 0
        for request in result.notifications:
            try:
                self.notifier.notify(request)
            except Exception:
                logger.exception(
                    "Notification %s for event %s failed",
                    request.kind.value,
                    result.event_id,
                )
                continue
            sent += 1
        return sent

    def _dispatch(self, event_type: BillingWebhookEventType, event: BillingWebhookEvent) -> ReconciliationResult:
        if event_type == BillingWebhookEventType.CHECKOUT_COMPLETED:
            return self._handle_checkout_completed(event)
        if event_type == BillingWebhookEventType.INVOICE_PAYMENT_SUCCEEDED:
            return self._handle_invoice(event, SubscriptionStatus.ACTIVE)
        if event_type == BillingWebhookEventType.INVOICE_PAYMENT_FAILED:
            return self._handle_invoice(event, SubscriptionStatus.PAST_DUE)
        if event_type == BillingWebhookEventType.SUBSCRIPTION_UPDATED:
            return self._handle_subscription_updated(event)
        return self._handle_subscription_deleted(event)

    def _handle_checkout_completed(self, event: BillingWebhookEvent) -> ReconciliationResult:
        session = event.payload
        metadata = _safe_metadata(session.get("metadata"))
        email = _first_str(
            session.get("customer_email"),
            _get(session, "customer_details", "email"),
            metadata.get("email"),
        )
        customer_id = _object_id(session.get("customer"))
        subscription_id = _object_id(session.get("subscription"))

        account = self._resolve_account(
            event,
            user_id=_first_str(session.get("client_reference_id"), metadata.get("userId")),
            customer_id=customer_id,
            email=email,
        )
        if account is None:
            return self._unresolved(event, email=email, customer_id=customer_id)

        transition = SubscriptionTransition(
            status=SubscriptionStatus.ACTIVE,
            grant_role=role_for_membership(metadata.get("membershipType")),
            subscription_id=subscription_id,
            stripe_customer_id=customer_id,
            switches_subscription=True,
        )
        applied = self.repository.apply_subscription_transition(account.user_id, transition, event.occurred_at)
        if applied is None:
            return self._stale(event, account)

        updated = applied.account
        if applied.late:
            logger.info(
                "Checkout event %s arrived after newer events for user %s; granted role only, status stays %s",
                event.event_id,
                updated.user_id,
                updated.subscription_status.value,
            )
        welcome = NotificationRequest(
            recipient=email or updated.email,
            kind=NotificationKind.MEMBERSHIP_WELCOME,
            metadata={
                "name": metadata.get("name") or updated.display_name,
                "membershipType": metadata.get("membershipType") or updated.role.value,
                "appUrl": self.app_base_url,
            },
            dedupe_key=f"{NotificationKind.MEMBERSHIP_WELCOME.value}:{subscription_id or event.event_id}",
        )
        self._audit(
            BillingAuditEventType.SUBSCRIPTION_ACTIVATED,
            event,
            updated,
            role=updated.role.value,
            late="true" if applied.late else "false",
        )
        return self._applied(event, applied, [welcome])

    def _handle_invoice(self, event: BillingWebhookEvent, status: SubscriptionStatus) -> ReconciliationResult:
        invoice = event.payload
        subscription_id = _first_str(
            _object_id(invoice.get("subscription")),
            _get(invoice, "parent", "subscription_details", "subscription"),
        )
        customer_id = _object_id(invoice.get("customer"))
        email = _str_or_none(invoice.get("customer_email"))

        account = self._resolve_account(
            event,
            subscription_id=subscription_id,
            customer_id=customer_id,
            email=email,
        )
        if account is None:
            return self._unresolved(event, email=email, customer_id=customer_id)

        transition = SubscriptionTransition(
            status=status,
            subscription_id=subscription_id,
            stripe_customer_id=customer_id,
        )
        if transition.targets_other_subscription(account):
            return self._superseded(event, account, subscription_id)
        applied = self.repository.apply_subscription_transition(account.user_id, transition, event.occurred_at)
        if applied is None:
            return self._stale(event, account)

        updated = applied.account
        notifications: List[NotificationRequest] = []
        if status == SubscriptionStatus.PAST_DUE:
            notifications.append(
                self._past_due_notice(
                    updated,
                    invoice_key=_str_or_none(invoice.get("id")) or event.event_id,
                    update_url=_str_or_none(invoice.get("hosted_invoice_url")),
                    recipient=email,
                )
            )
            audit_type = BillingAuditEventType.PAYMENT_FAILED
        elif applied.previous_status == SubscriptionStatus.PAST_DUE:
            audit_type = BillingAuditEventType.PAYMENT_RECOVERED
        else:
            audit_type = BillingAuditEventType.SUBSCRIPTION_UPDATED

        self._audit(audit_type, event, updated, invoice_id=_str_or_none(invoice.get("id")) or "")
        return self._applied(event, applied, notifications)

    def _handle_subscription_updated(self, event: BillingWebhookEvent) -> ReconciliationResult:
        subscription = event.payload
        provider_status = subscription.get("status")
        status = map_provider_status(provider_status)
        if status is None:
            logger.warning(
                "Unrecognized subscription status %r in event %s; no action taken",
                provider_status,
                event.event_id,
            )
            return self._result(event, ReconciliationOutcome.IGNORED)

        subscription_id = _object_id(subscription.get("id"))
        customer_id = _object_id(subscription.get("customer"))
        account = self._resolve_account(
            event,
            subscription_id=subscription_id,
            customer_id=customer_id,
            lookup_customer=True,
        )
        if account is None:
            return self._unresolved(event, customer_id=customer_id)

        canceled = status == SubscriptionStatus.CANCELED
        transition = SubscriptionTransition(
            status=status,
            downgrade_role=canceled,
            ended=canceled,
            subscription_id=subscription_id,
            stripe_customer_id=customer_id,
        )
        if transition.targets_other_subscription(account):
            return self._superseded(event, account, subscription_id)
        applied = self.repository.apply_subscription_transition(account.user_id, transition, event.occurred_at)
        if applied is None:
            return self._stale(event, account)

        updated = applied.account
        notifications: List[NotificationRequest] = []
        if status != applied.previous_status:
            if status == SubscriptionStatus.PAST_DUE:
                notifications.append(
                    self._past_due_notice(
                        updated,
                        invoice_key=_object_id(subscription.get("latest_invoice")) or event.event_id,
                    )
                )
            elif canceled:
                notifications.append(self._canceled_notice(updated, subscription_id or event.event_id))

        audit_type = (
            BillingAuditEventType.SUBSCRIPTION_CANCELED if canceled else BillingAuditEventType.SUBSCRIPTION_UPDATED
        )
        self._audit(audit_type, event, updated, provider_status=str(provider_status))
        return self._applied(event, applied, notifications)

    def _handle_subscription_deleted(self, event: BillingWebhookEvent) -> ReconciliationResult:
        subscription = event.payload
        subscription_id = _object_id(subscription.get("id"))
        customer_id = _object_id(subscription.get("customer"))
        account = self._resolve_account(
            event,
            subscription_id=subscription_id,
            customer_id=customer_id,
            lookup_customer=True,
        )
        if account is None:
            return self._unresolved(event, customer_id=customer_id)

        transition = SubscriptionTransition(
            status=SubscriptionStatus.CANCELED,
            downgrade_role=True,
            ended=True,
            subscription_id=subscription_id,
            stripe_customer_id=customer_id,
        )
        if transition.targets_other_subscription(account):
            return self._superseded(event, account, subscription_id)
        applied = self.repository.apply_subscription_transition(account.user_id, transition, event.occurred_at)
        if applied is None:
            return self._stale(event, account)

        updated = applied.account
        self._audit(BillingAuditEventType.SUBSCRIPTION_CANCELED, event, updated)
        return self._applied(event, applied, [self._canceled_notice(updated, subscription_id or event.event_id)])

    def _resolve_account(
        self,
        event: BillingWebhookEvent,
        *,
        user_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        email: Optional[str] = None,
        lookup_customer: bool = False,
    ) -> Optional[MemberAccount]:
        if user_id:
            account = self.repository.get_user(user_id)
            if account is not None:
                return account
        if subscription_id:
            account = self.repository.find_user_by_subscription_id(subscription_id)
            if account is not None:
                return account
        if customer_id:
            account = self.repository.find_user_by_customer_id(customer_id)
            if account is not None:
                return account
        if email:
            account = self.repository.find_user_by_email(email)
            if account is not None:
                return account
        if lookup_customer and customer_id:
            provider_email = self.provider.retrieve_customer_email(customer_id)
            if provider_email:
                logger.debug("Resolved customer %s through provider lookup for event %s", customer_id, event.event_id)
                return self.repository.find_user_by_email(provider_email)
        return None

    def _past_due_notice(
        self,
        account: MemberAccount,
        *,
        invoice_key: str,
        update_url: Optional[str] = None,
        recipient: Optional[str] = None,
    ) -> NotificationRequest:
        return NotificationRequest(
            recipient=recipient or account.email,
            kind=NotificationKind.SUBSCRIPTION_PAST_DUE,
            metadata={
                "name": account.display_name,
                "updateUrl": update_url or f"{self.app_base_url}/payment-plan",
                "appUrl": self.app_base_url,
            },
            dedupe_key=f"{NotificationKind.SUBSCRIPTION_PAST_DUE.value}:{invoice_key}",
        )

    def _canceled_notice(self, account: MemberAccount, key: str) -> NotificationRequest:
        return NotificationRequest(
            recipient=account.email,
            kind=NotificationKind.SUBSCRIPTION_CANCELED,
            metadata={"name": account.display_name, "appUrl": self.app_base_url},
            dedupe_key=f"{NotificationKind.SUBSCRIPTION_CANCELED.value}:{key}",
        )

    def _unresolved(
        self,
        event: BillingWebhookEvent,
        *,
        email: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> ReconciliationResult:
        logger.error(
            "No member matches webhook event %s type=%s customer=%s email=%s",
            event.event_id,
            event.event_type,
            customer_id,
            email,
            extra={"billing_event_id": event.event_id, "billing_customer_id": customer_id},
        )
        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.RESOLUTION_FAILED,
                webhook_event_id=event.event_id,
                metadata={
                    "event_type": event.event_type,
                    "customer_id": customer_id or "",
                    "email": email or "",
                },
            )
        )
        return self._result(event, ReconciliationOutcome.UNRESOLVED)

    def _stale(self, event: BillingWebhookEvent, account: MemberAccount) -> ReconciliationResult:
        logger.info(
            "Skipping stale webhook event %s for user %s (event at %s)",
            event.event_id,
            account.user_id,
            event.occurred_at.isoformat(),
        )
        self._audit(BillingAuditEventType.STALE_EVENT_SKIPPED, event, account)
        return self._result(event, ReconciliationOutcome.STALE, user_id=account.user_id)

    def _superseded(
        self,
        event: BillingWebhookEvent,
        account: MemberAccount,
        subscription_id: Optional[str],
    ) -> ReconciliationResult:
        logger.info(
            "Skipping webhook event %s for subscription %s; user %s now holds %s",
            event.event_id,
            subscription_id,
            account.user_id,
            account.subscription_id,
        )
        self._audit(
            BillingAuditEventType.SUPERSEDED_EVENT_SKIPPED,
            event,
            account,
            event_subscription_id=subscription_id or "",
        )
        return self._result(event, ReconciliationOutcome.SUPERSEDED, user_id=account.user_id)

    def _applied(
        self,
        event: BillingWebhookEvent,
        applied: TransitionResult,
        notifications: Iterable[NotificationRequest],
    ) -> ReconciliationResult:
        return ReconciliationResult(
            event_id=event.event_id,
            event_type=event.event_type,
            outcome=ReconciliationOutcome.APPLIED,
            user_id=applied.account.user_id,
            previous_status=applied.previous_status,
            status=applied.account.subscription_status,
            notifications=list(notifications),
        )

    def _result(
        self,
        event: BillingWebhookEvent,
        outcome: ReconciliationOutcome,
        *,
        user_id: Optional[str] = None,
    ) -> ReconciliationResult:
        return ReconciliationResult(
            event_id=event.event_id,
            event_type=event.event_type,
            outcome=outcome,
            user_id=user_id,
        )

    def _audit(
        self,
        audit_type: BillingAuditEventType,
        event: BillingWebhookEvent,
        account: MemberAccount,
        **metadata: str,
    ) -> None:
        self.event_logger.log(
            BillingAuditEvent(
                event_type=audit_type,
                webhook_event_id=event.event_id,
                subscription_id=account.subscription_id,
                actor_id=account.user_id,
                metadata={"event_type": event.event_type, **metadata},
            )
        )


def _get(payload: Dict[str, object], *keys: str) -> Optional[object]:
    current: object = payload
    for key in keys:
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def _str_or_none(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _first_str(*values: object) -> Optional[str]:
    for value in values:
        text = _str_or_none(value)
        if text:
            return text
    return None


def _object_id(value: object) -> Optional[str]:
    """Provider references are either ids or expanded objects carrying ``id``."""

    if isinstance(value, dict):
        return _str_or_none(value.get("id"))
    return _str_or_none(value)


def _safe_metadata(value: object) -> Dict[str, str]:
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items() if v is not None}
    return {}


def _parse_timestamp(value: object) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise TypeError("Unsupported datetime value")


__all__ = [
    "BillingEventLogger",
    "BillingNotifier",
    "BillingRepository",
    "BillingService",
    "PaymentProvider",
    "PaymentProviderError",
]
