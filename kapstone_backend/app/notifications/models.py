"""Records of transactional email sent for billing transitions."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    ERROR = "error"


class Notification(BaseModel):
    """One row of the ``email_logs`` table.

    A record is claimed as ``pending`` before the send and settles once, to
    ``sent`` or ``error``; settled records are never updated again.
    """

    recipient: str
    template: str
    subject: str
    dedupe_key: str
    status: NotificationStatus = NotificationStatus.PENDING
    provider_message_id: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @property
    def settled(self) -> bool:
        return self.status != NotificationStatus.PENDING


__all__ = ["Notification", "NotificationStatus"]
