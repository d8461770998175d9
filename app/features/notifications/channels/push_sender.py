"""
Web push sender.

Fans a notification out to every active subscription of the recipient.
Endpoints the push service reports as gone (404/410) are deactivated.
"""

import asyncio
import json

from pywebpush import WebPushException, webpush

from app.config import Settings
from app.features.notifications.channels.base import ChannelSender, ChannelSenderError, DeliveryResult
from app.features.notifications.domain import (
    Channel,
    NotificationPayload,
    Priority,
    PushPayload,
    PushSubscription,
)
from app.features.notifications.repository.push_subscription_repository import (
    PushSubscriptionRepository,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

PUSH_TTL_SECONDS = 24 * 60 * 60
EXPIRED_SUBSCRIPTION_STATUSES = {404, 410}


class PushSender(ChannelSender):
    channel = Channel.PUSH

    def __init__(
        self,
        subscriptions: PushSubscriptionRepository,
        vapid_private_key: str | None,
        vapid_public_key: str | None,
        vapid_subject: str = "mailto:admin@edupro.com",
    ):
        self.subscriptions = subscriptions
        self.vapid_private_key = vapid_private_key
        self.vapid_public_key = vapid_public_key
        self.vapid_subject = vapid_subject

        if not self.configured:
            logger.warning("VAPID keys not configured. Push notifications will not work.")

    @classmethod
    def from_settings(
        cls, settings: Settings, subscriptions: PushSubscriptionRepository
    ) -> "PushSender":
        return cls(
            subscriptions,
            settings.VAPID_PRIVATE_KEY,
            settings.VAPID_PUBLIC_KEY,
            settings.VAPID_SUBJECT,
        )

    @property
    def configured(self) -> bool:
        return bool(self.vapid_private_key and self.vapid_public_key)

    @staticmethod
    def build_body(
        subject: str | None, content: str, payload: NotificationPayload | None, priority: Priority
    ) -> str:
        push_payload = payload if isinstance(payload, PushPayload) else PushPayload()
        return json.dumps(
            {
                "title": subject or "Notification",
                "body": content,
                "url": push_payload.url,
                "icon": push_payload.icon,
                "tag": push_payload.tag,
                "requireInteraction": push_payload.require_interaction or priority is Priority.HIGH,
                "data": push_payload.metadata,
            }
        )

    def _push(self, subscription: PushSubscription, body: str) -> None:
        webpush(
            subscription_info=subscription.to_webpush_info(),
            data=body,
            vapid_private_key=self.vapid_private_key,
            vapid_claims={"sub": self.vapid_subject},
            ttl=PUSH_TTL_SECONDS,
        )

    async def _send_one(self, subscription: PushSubscription, body: str) -> bool:
        try:
            await asyncio.to_thread(self._push, subscription, body)
            return True
        except WebPushException as e:
            status_code = getattr(e.response, "status_code", None)
            logger.warning(
                "Push delivery to endpoint failed",
                user_id=subscription.user_id,
                status_code=status_code,
                error=str(e),
            )
            if status_code in EXPIRED_SUBSCRIPTION_STATUSES:
                await self.subscriptions.deactivate(subscription.endpoint)
            return False

    async def _send(
        self,
        recipient: str,
        subject: str | None,
        content: str,
        payload: NotificationPayload | None,
        priority: Priority,
    ) -> DeliveryResult:
        subscriptions = await self.subscriptions.list_active(recipient)
        if not subscriptions:
            raise ChannelSenderError("No active push subscriptions found", retryable=False)

        body = self.build_body(subject, content, payload, priority)
        results = await asyncio.gather(*(self._send_one(sub, body) for sub in subscriptions))

        sent = sum(1 for ok in results if ok)
        failed = len(results) - sent
        logger.info("Push fan-out finished", user_id=recipient, sent=sent, failed=failed)

        if sent == 0:
            raise ChannelSenderError(f"All {failed} push subscriptions failed")

        return DeliveryResult(
            success=True,
            error=f"{failed} subscriptions failed" if failed else None,
        )
