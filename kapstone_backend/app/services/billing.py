"""Application wiring for the billing service."""
from __future__ import annotations

import logging

from ...mail import EmailConfig, EmailRenderer, create_email_provider
from ..billing import BillingAuditEvent, BillingEventLogger, BillingService, PaymentProvider
from ..billing.config import BillingConfig
from ..billing.providers import LocalSandboxPaymentProvider, StripePaymentProvider
from ..billing.repository import PostgresBillingRepository
from ..notifications import NotificationEmitter, PostgresNotificationLog


logger = logging.getLogger("billing")


class LoggingBillingEventLogger(BillingEventLogger):
    """Simple event logger forwarding billing audit events to logging."""

    def log(self, event: BillingAuditEvent) -> None:
        logger.info(
            "Billing event %s webhook=%s subscription=%s actor=%s metadata=%s",
            event.event_type.value,
            event.webhook_event_id,
            event.subscription_id,
            event.actor_id,
            event.metadata,
        )


def create_payment_provider(config: BillingConfig) -> PaymentProvider:
    if config.provider_name == "sandbox":
        logger.warning("Using the local sandbox payment provider; no real charges will be made")
        return LocalSandboxPaymentProvider()
    return StripePaymentProvider(
        config.stripe_api_key,
        timeout_seconds=config.stripe_timeout_seconds,
        max_network_retries=config.stripe_max_network_retries,
    )


def build_billing_service(config: BillingConfig, email_config: EmailConfig) -> BillingService:
    """Wire the production collaborators; built once at application startup."""

    notifier = NotificationEmitter(
        log=PostgresNotificationLog(),
        sender=create_email_provider(email_config),
        renderer=EmailRenderer(),
    )
    return BillingService(
        repository=PostgresBillingRepository(),
        provider=create_payment_provider(config),
        notifier=notifier,
        event_logger=LoggingBillingEventLogger(),
        catalog=config.catalog(),
        success_url=config.success_url,
        cancel_url=config.cancel_url,
        app_base_url=email_config.app_base_url,
        claim_ttl_seconds=config.webhook_claim_ttl_seconds,
    )


__all__ = [
    "LoggingBillingEventLogger",
    "build_billing_service",
    "create_payment_provider",
]
