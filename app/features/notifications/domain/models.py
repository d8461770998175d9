"""
Domain models for notification delivery.

Plain dataclasses shared by the repositories, the worker and the API
layer. Status transitions are enforced by the repository queries, not here.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from app.features.notifications.domain.payloads import NotificationPayload


class Channel(str, Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    PUSH = "PUSH"
    IN_APP = "IN_APP"


class Priority(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        """Dispatch rank, lower goes first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SENT = "SENT"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class BulkJobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(slots=True)
class NotificationJob:
    """Represents a notification_jobs row."""

    id: str
    channel: Channel
    recipient: str
    content: str
    scheduled_at: datetime
    created_at: datetime
    updated_at: datetime
    priority: Priority = Priority.MEDIUM
    subject: str | None = None
    payload: NotificationPayload | None = None
    attempts: int = 0
    max_attempts: int = 3
    status: JobStatus = JobStatus.PENDING
    last_error: str | None = None

    def dispatch_order(self) -> tuple[int, datetime]:
        return (self.priority.rank, self.scheduled_at)


@dataclass(slots=True)
class BulkRecipient:
    id: str
    contact: str
    variables: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class BulkNotificationJob:
    """Represents a bulk_notification_jobs row."""

    id: str
    template_id: str
    recipients: list[BulkRecipient]
    created_at: datetime
    status: BulkJobStatus = BulkJobStatus.PENDING
    total_recipients: int = 0
    processed_recipients: int = 0
    successful_deliveries: int = 0
    failed_deliveries: int = 0
    completed_at: datetime | None = None


@dataclass(slots=True)
class NotificationTemplate:
    id: str
    name: str
    channel: Channel
    content: str
    subject: str | None = None
    variables: list[str] = field(default_factory=list)
    is_active: bool = True


@dataclass(slots=True)
class PushSubscription:
    endpoint: str
    user_id: str
    p256dh: str
    auth: str
    is_active: bool = True

    def to_webpush_info(self) -> dict:
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}


@dataclass(slots=True)
class InAppNotification:
    """Represents an in_app_notifications row shown in a user's inbox."""

    id: int
    user_id: str
    title: str
    content: str
    created_at: datetime
    link: str | None = None
    category: str | None = None
    data: dict[str, Any] | None = None
    is_read: bool = False
