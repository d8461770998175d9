from app.features.notifications.channels.base import ChannelSender, DeliveryResult
from app.features.notifications.domain import Channel, InAppPayload, NotificationPayload, Priority
from app.features.notifications.repository.in_app_repository import InAppNotificationRepository


class InAppSender(ChannelSender):
    """Stores the notification for the user's in-app notification center."""

    channel = Channel.IN_APP

    def __init__(self, repository: InAppNotificationRepository):
        self.repository = repository

    async def _send(
        self,
        recipient: str,
        subject: str | None,
        content: str,
        payload: NotificationPayload | None,
        priority: Priority,
    ) -> DeliveryResult:
        in_app = payload if isinstance(payload, InAppPayload) else None
        notification_id = await self.repository.create(
            recipient,
            subject or "Notification",
            content,
            link=in_app.link if in_app else None,
            category=in_app.category if in_app else None,
            data={**(payload.metadata if payload else {}), "priority": priority.value},
        )
        return DeliveryResult(success=True, message_id=str(notification_id))
