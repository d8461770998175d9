"""Base channel sender interface and delivery result."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from app.features.notifications.domain import Channel, NotificationPayload, Priority
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class ChannelSenderError(Exception):
    """Expected transport failure, reported as an unsuccessful DeliveryResult."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


@dataclass(slots=True)
class DeliveryResult:
    success: bool
    error: str | None = None
    message_id: str | None = None


class ChannelSender(ABC):
    """
    One delivery medium.

    Subclasses implement ``_send`` and raise ChannelSenderError for
    transport problems; ``deliver`` turns those into a failed result.
    Anything else propagates to the worker's per-job failure boundary.
    """

    channel: Channel

    @property
    def configured(self) -> bool:
        return True

    async def deliver(
        self,
        recipient: str,
        subject: str | None,
        content: str,
        payload: NotificationPayload | None = None,
        priority: Priority = Priority.MEDIUM,
    ) -> DeliveryResult:
        if not self.configured:
            return DeliveryResult(success=False, error=f"{self.channel.value} channel not configured")

        try:
            return await self._send(recipient, subject, content, payload, priority)
        except ChannelSenderError as e:
            logger.warning(
                "Channel delivery failed",
                channel=self.channel.value,
                error=str(e),
                retryable=e.retryable,
            )
            return DeliveryResult(success=False, error=str(e))

    async def close(self) -> None:
        """Release transport resources. Most senders hold none."""

    @abstractmethod
    async def _send(
        self,
        recipient: str,
        subject: str | None,
        content: str,
        payload: NotificationPayload | None,
        priority: Priority,
    ) -> DeliveryResult:
        """Perform the transport call."""
