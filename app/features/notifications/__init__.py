"""
Notifications feature package.

Queue-backed delivery over EMAIL, SMS, PUSH and IN_APP. Domain models,
repositories, channel senders, the producer service, the delivery worker
and the HTTP router live together in this slice.
"""

# Re-export the primary building blocks for easy access.
from .api.router import router as notifications_router  # noqa: F401
from .container import NotificationComponents, build_notification_components  # noqa: F401
from .domain.models import Channel, JobStatus, NotificationJob, Priority  # noqa: F401
from .services import NotificationService, NotificationWorker  # noqa: F401
