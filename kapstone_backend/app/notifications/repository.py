"""PostgreSQL-backed email log."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterable, Optional

import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..database import managed_connection
from .models import Notification, NotificationStatus


class PostgresNotificationLog:
    """Stores one ``email_logs`` row per logical notification."""

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

    def is_suppressed(self, recipient: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT 1 FROM email_bounces WHERE LOWER(email) = LOWER(%s) LIMIT 1",
                (recipient.strip(),),
            )
            return cursor.fetchone() is not None

    def record_bounce(self, recipient: str, reason: str) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                "INSERT INTO email_bounces (email, reason, bounce_type) VALUES (%s, %s, %s)",
                (recipient.strip(), reason, "hard"),
            )

    def claim(self, notification: Notification) -> bool:
        """Insert a pending row; ``False`` when the dedupe key was already used."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO email_logs (
                    recipient,
                    template,
                    subject,
                    status,
                    dedupe_key,
                    metadata,
                    created_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (dedupe_key) DO NOTHING
                RETURNING id
                """,
                (
                    notification.recipient,
                    notification.template,
                    notification.subject,
                    NotificationStatus.PENDING.value,
                    notification.dedupe_key,
                    psycopg2.extras.Json(notification.metadata),
                    notification.created_at,
                ),
            )
            return cursor.fetchone() is not None

    def mark_sent(self, dedupe_key: str, provider_message_id: Optional[str]) -> None:
        self._settle(dedupe_key, NotificationStatus.SENT, provider_message_id=provider_message_id)

    def mark_error(self, dedupe_key: str, error_message: str) -> None:
        self._settle(dedupe_key, NotificationStatus.ERROR, error_message=error_message)

    def _settle(
        self,
        dedupe_key: str,
        status: NotificationStatus,
        *,
        provider_message_id: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE email_logs
                SET status = %s, provider_message_id = %s, error_message = %s, sent_at = NOW()
                WHERE dedupe_key = %s AND status = %s
                """,
                (
                    status.value,
                    provider_message_id,
                    error_message,
                    dedupe_key,
                    NotificationStatus.PENDING.value,
                ),
            )


__all__ = ["PostgresNotificationLog"]
