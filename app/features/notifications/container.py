"""
Wiring for the notification feature.

Builds repositories, channel senders, the producer service and the
worker from settings. Nothing is started here; callers own the lifecycle.
"""

from dataclasses import dataclass

from app.config import Settings
from app.features.notifications.channels import (
    ChannelSender,
    EmailSender,
    InAppSender,
    PushSender,
    SmsSender,
)
from app.features.notifications.domain import Channel
from app.features.notifications.repository.in_app_repository import InAppNotificationRepository
from app.features.notifications.repository.job_repository import (
    BulkNotificationRepository,
    NotificationJobRepository,
)
from app.features.notifications.repository.push_subscription_repository import (
    PushSubscriptionRepository,
)
from app.features.notifications.repository.template_repository import (
    NotificationTemplateRepository,
)
from app.features.notifications.services import NotificationService, NotificationWorker


@dataclass(slots=True)
class NotificationComponents:
    service: NotificationService
    worker: NotificationWorker
    senders: dict[Channel, ChannelSender]
    push_subscriptions: PushSubscriptionRepository
    in_app: InAppNotificationRepository

    async def shutdown(self) -> None:
        """Stop the worker, then release sender transports."""
        await self.worker.stop()
        for sender in self.senders.values():
            await sender.close()


def build_senders(
    settings: Settings,
    push_subscriptions: PushSubscriptionRepository,
    in_app: InAppNotificationRepository,
) -> dict[Channel, ChannelSender]:
    return {
        Channel.EMAIL: EmailSender.from_settings(settings),
        Channel.SMS: SmsSender.from_settings(settings),
        Channel.PUSH: PushSender.from_settings(settings, push_subscriptions),
        Channel.IN_APP: InAppSender(in_app),
    }


def build_notification_components(settings: Settings) -> NotificationComponents:
    job_repository = NotificationJobRepository()
    push_subscriptions = PushSubscriptionRepository()
    in_app = InAppNotificationRepository()
    senders = build_senders(settings, push_subscriptions, in_app)

    service = NotificationService(
        job_repository,
        BulkNotificationRepository(),
        NotificationTemplateRepository(),
        default_max_attempts=settings.NOTIFICATION_MAX_ATTEMPTS,
    )
    worker = NotificationWorker.from_settings(settings, job_repository, senders)

    return NotificationComponents(
        service=service,
        worker=worker,
        senders=senders,
        push_subscriptions=push_subscriptions,
        in_app=in_app,
    )
