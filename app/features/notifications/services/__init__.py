"""
Service layer for notification delivery.
"""

from .notification_service import (
    InvalidNotificationError,
    NotificationError,
    NotificationService,
    TemplateNotFoundError,
)
from .worker import NotificationWorker, SweepMetrics, backoff_delay

__all__ = [
    "InvalidNotificationError",
    "NotificationError",
    "NotificationService",
    "NotificationWorker",
    "SweepMetrics",
    "TemplateNotFoundError",
    "backoff_delay",
]
