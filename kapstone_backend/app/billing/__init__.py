"""Billing domain package: checkout, webhook verification and subscription reconciliation."""

from .catalog import PlanCatalog, PlanDefinition, UnknownPlanError, map_provider_status, role_for_membership
from .models import (
    BillingAuditEvent,
    BillingAuditEventType,
    BillingWebhookEvent,
    BillingWebhookEventType,
    CheckoutSession,
    CheckoutVerification,
    MemberAccount,
    MemberRole,
    MembershipType,
    NotificationKind,
    NotificationRequest,
    PaymentMethod,
    PlanInterval,
    ReconciliationOutcome,
    ReconciliationResult,
    SubscriptionStatus,
    SubscriptionTransition,
    TransitionResult,
)
from .service import (
    BillingEventLogger,
    BillingNotifier,
    BillingRepository,
    BillingService,
    PaymentProvider,
    PaymentProviderError,
)
from .signature import MalformedEventError, SignatureVerificationError, construct_event

__all__ = [
    "BillingAuditEvent",
    "BillingAuditEventType",
    "BillingEventLogger",
    "BillingNotifier",
    "BillingRepository",
    "BillingService",
    "BillingWebhookEvent",
    "BillingWebhookEventType",
    "CheckoutSession",
    "CheckoutVerification",
    "MalformedEventError",
    "MemberAccount",
    "MemberRole",
    "MembershipType",
    "NotificationKind",
    "NotificationRequest",
    "PaymentMethod",
    "PaymentProvider",
    "PaymentProviderError",
    "PlanCatalog",
    "PlanDefinition",
    "PlanInterval",
    "ReconciliationOutcome",
    "ReconciliationResult",
    "SignatureVerificationError",
    "SubscriptionStatus",
    "SubscriptionTransition",
    "TransitionResult",
    "UnknownPlanError",
    "construct_event",
    "map_provider_status",
    "role_for_membership",
]
