"""Transactional email notifications for billing transitions."""

from .emitter import NotificationEmitter, NotificationLog
from .models import Notification, NotificationStatus
from .repository import PostgresNotificationLog

__all__ = [
    "Notification",
    "NotificationEmitter",
    "NotificationLog",
    "NotificationStatus",
    "PostgresNotificationLog",
]
