"""Persistence layer for billing domain objects."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Optional

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..database import managed_connection
from .models import (
    BillingWebhookEvent,
    MemberAccount,
    MemberRole,
    ReconciliationOutcome,
    SubscriptionStatus,
    SubscriptionTransition,
    TransitionResult,
)

_USER_COLUMNS = """
    id,
    auth_id,
    email,
    role,
    full_name,
    stripe_customer_id,
    subscription_id,
    subscription_status,
    subscription_updated_at,
    subscription_ended_at,
    subscription_event_at
"""


def _row_to_account(row: dict) -> MemberAccount:
    return MemberAccount(
        user_id=str(row["id"]),
        auth_id=str(row["auth_id"]) if row.get("auth_id") else None,
        email=row["email"],
        role=MemberRole(row.get("role") or MemberRole.PATIENT.value),
        full_name=row.get("full_name"),
        stripe_customer_id=row.get("stripe_customer_id"),
        subscription_id=row.get("subscription_id"),
        subscription_status=SubscriptionStatus(row.get("subscription_status") or SubscriptionStatus.NONE.value),
        subscription_updated_at=row.get("subscription_updated_at"),
        subscription_ended_at=row.get("subscription_ended_at"),
        subscription_event_at=row.get("subscription_event_at"),
    )


class PostgresBillingRepository:
    """Concrete repository persisting member subscription state in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    def _fetch_account(self, where: str, value: str) -> Optional[MemberAccount]:
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE {where} ORDER BY created_at ASC LIMIT 1",
                (value,),
            )
            row = cursor.fetchone()
        return _row_to_account(row) if row else None

    def get_user(self, user_id: str) -> Optional[MemberAccount]:
        return self._fetch_account("id::text = %s", user_id)

    def get_user_by_auth_id(self, auth_id: str) -> Optional[MemberAccount]:
        return self._fetch_account("auth_id::text = %s", auth_id)

    def find_user_by_email(self, email: str) -> Optional[MemberAccount]:
        return self._fetch_account("LOWER(email) = LOWER(%s)", email.strip())

    def find_user_by_customer_id(self, customer_id: str) -> Optional[MemberAccount]:
        return self._fetch_account("stripe_customer_id = %s", customer_id)

    def find_user_by_subscription_id(self, subscription_id: str) -> Optional[MemberAccount]:
        return self._fetch_account("subscription_id = %s", subscription_id)

    def apply_subscription_transition(
        self,
        user_id: str,
        transition: SubscriptionTransition,
        occurred_at: datetime,
    ) -> Optional[TransitionResult]:
        """Lock the member row, compare event times, and write the new state.

        Returns ``None`` without writing when ``occurred_at`` is older than the
        stored transition or the event belongs to a subscription the member no
        longer holds. Raises ``LookupError`` if the member disappeared.
        """

        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id::text = %s FOR UPDATE",
                (user_id,),
            )
            row = cursor.fetchone()
            if not row:
                raise LookupError(f"User {user_id} no longer exists")

            current = _row_to_account(row)
            updated = transition.apply_to(current, occurred_at)
            if updated is None:
                return None

            cursor.execute(
                f"""
                UPDATE users
                SET
                    role = %s,
                    subscription_status = %s,
                    subscription_id = %s,
                    stripe_customer_id = %s,
                    subscription_updated_at = %s,
                    subscription_ended_at = %s,
                    subscription_event_at = %s
                WHERE id::text = %s
                RETURNING {_USER_COLUMNS}
                """,
                (
                    updated.role.value,
                    updated.subscription_status.value,
                    updated.subscription_id,
                    updated.stripe_customer_id,
                    updated.subscription_updated_at,
                    updated.subscription_ended_at,
                    updated.subscription_event_at,
                    user_id,
                ),
            )
            written = cursor.fetchone()

        return TransitionResult(
            account=_row_to_account(written),
            previous_status=current.subscription_status,
            late=updated.subscription_event_at != occurred_at,
        )

    def claim_webhook_event(self, event: BillingWebhookEvent, *, claim_ttl_seconds: int) -> bool:
        """Insert a processing marker, or take over one abandoned past ``claim_ttl_seconds``."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO billing_webhook_events (
                    event_id,
                    event_type,
                    payload,
                    status,
                    occurred_at,
                    received_at,
                    claimed_at
                )
                VALUES (%s, %s, %s, 'processing', %s, %s, NOW())
                ON CONFLICT (event_id) DO UPDATE
                SET claimed_at = NOW(), attempts = billing_webhook_events.attempts + 1
                WHERE billing_webhook_events.status = 'processing'
                  AND billing_webhook_events.claimed_at < NOW() - make_interval(secs => %s)
                RETURNING event_id
                """,
                (
                    event.event_id,
                    event.event_type,
                    psycopg2.extras.Json(event.payload),
                    event.occurred_at,
                    event.received_at,
                    claim_ttl_seconds,
                ),
            )
            return cursor.fetchone() is not None

    def release_webhook_event(self, event_id: str) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                "DELETE FROM billing_webhook_events WHERE event_id = %s AND status = 'processing'",
                (event_id,),
            )

    def complete_webhook_event(self, event_id: str, outcome: ReconciliationOutcome) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE billing_webhook_events
                SET status = 'processed', outcome = %s, processed_at = NOW()
                WHERE event_id = %s
                """,
                (outcome.value, event_id),
            )


__all__ = ["PostgresBillingRepository"]
