"""
Job runners for the notifications feature.
"""

from .notification_job import start_notification_worker

__all__ = ["start_notification_worker"]
