"""
Domain subpackage for notification delivery.
"""

from .models import (
    BulkJobStatus,
    BulkNotificationJob,
    BulkRecipient,
    Channel,
    InAppNotification,
    JobStatus,
    NotificationJob,
    NotificationTemplate,
    Priority,
    PushSubscription,
)
from .payloads import (
    EmailPayload,
    InAppPayload,
    NotificationPayload,
    PushPayload,
    SmsPayload,
    empty_payload,
    payload_adapter,
)
from .templates import missing_variables, render_template

__all__ = [
    "BulkJobStatus",
    "BulkNotificationJob",
    "BulkRecipient",
    "Channel",
    "EmailPayload",
    "InAppNotification",
    "InAppPayload",
    "JobStatus",
    "NotificationJob",
    "NotificationPayload",
    "NotificationTemplate",
    "Priority",
    "PushPayload",
    "PushSubscription",
    "SmsPayload",
    "empty_payload",
    "missing_variables",
    "payload_adapter",
    "render_template",
]
