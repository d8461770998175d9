"""SMTP email sender."""

from email.message import EmailMessage
from email.utils import formataddr, make_msgid

import aiosmtplib

from app.config import Settings
from app.features.notifications.channels.base import ChannelSender, ChannelSenderError, DeliveryResult
from app.features.notifications.domain import Channel, EmailPayload, NotificationPayload, Priority
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SUBJECT = "Notification"
SMTP_TIMEOUT_SECONDS = 20


class EmailSender(ChannelSender):
    channel = Channel.EMAIL

    def __init__(
        self,
        host: str,
        port: int,
        username: str | None,
        password: str | None,
        *,
        use_tls: bool = False,
        from_name: str = "EduPro Suite",
        from_email: str | None = None,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_name = from_name
        self.from_email = from_email or username or "noreply@edupro.com"

        if not self.configured:
            logger.warning("SMTP credentials not configured. Email notifications will not work.")

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailSender":
        return cls(
            settings.SMTP_HOST,
            settings.SMTP_PORT,
            settings.SMTP_USER,
            settings.SMTP_PASS,
            use_tls=settings.SMTP_SECURE,
            from_name=settings.SMTP_FROM_NAME,
            from_email=settings.SMTP_FROM_EMAIL,
        )

    @property
    def configured(self) -> bool:
        return bool(self.username and self.password)

    def build_message(
        self,
        recipient: str,
        subject: str | None,
        content: str,
        payload: NotificationPayload | None,
        priority: Priority,
    ) -> EmailMessage:
        message = EmailMessage()
        message["From"] = formataddr((self.from_name, self.from_email))
        message["To"] = recipient
        message["Subject"] = subject or DEFAULT_SUBJECT
        message["Message-ID"] = make_msgid(domain=self.from_email.rpartition("@")[2] or None)

        if priority is Priority.HIGH:
            message["X-Priority"] = "1"
            message["Importance"] = "high"

        email_payload = payload if isinstance(payload, EmailPayload) else None
        if email_payload and email_payload.reply_to:
            message["Reply-To"] = email_payload.reply_to

        message.set_content(content)
        if email_payload and email_payload.html:
            message.add_alternative(email_payload.html, subtype="html")

        return message

    async def _send(
        self,
        recipient: str,
        subject: str | None,
        content: str,
        payload: NotificationPayload | None,
        priority: Priority,
    ) -> DeliveryResult:
        if "@" not in recipient:
            raise ChannelSenderError(f"Invalid email recipient: {recipient!r}", retryable=False)

        message = self.build_message(recipient, subject, content, payload, priority)

        try:
            await aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                use_tls=self.use_tls,
                start_tls=False if self.use_tls else None,
                timeout=SMTP_TIMEOUT_SECONDS,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            raise ChannelSenderError(f"SMTP error: {e}") from e

        logger.info("Email sent", message_id=message["Message-ID"])
        return DeliveryResult(success=True, message_id=message["Message-ID"])
