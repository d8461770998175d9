"""
HTTP SMS gateway sender.

Gateways differ only in parameter names, so each known gateway maps the
logical fields (api key, sender id, message, number) to its own names.
"""

import json
import re

import httpx

from app.config import Settings
from app.features.notifications.channels.base import ChannelSender, ChannelSenderError, DeliveryResult
from app.features.notifications.domain import Channel, NotificationPayload, Priority
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_SMS_LENGTH = 160
URGENT_PREFIX = "[URGENT] "
REQUEST_TIMEOUT_SECONDS = 15.0
USER_AGENT = "EduPro-Suite/1.0"

# Logical field -> gateway parameter name
GATEWAY_PARAMETERS: dict[str, dict[str, str]] = {
    "generic": {
        "api_key": "api_key",
        "sender_id": "sender_id",
        "message": "message",
        "number": "number",
    },
    "ssl_wireless": {
        "api_key": "pass",
        "sender_id": "sid",
        "message": "sms",
        "number": "msisdn",
    },
    "grameenphone": {
        "api_key": "apikey",
        "sender_id": "cli",
        "message": "message",
        "number": "msisdn",
    },
    "robi": {
        "api_key": "ApiKey",
        "sender_id": "SenderId",
        "message": "Message",
        "number": "MobileNumber",
    },
    "banglalink": {
        "api_key": "passwd",
        "sender_id": "sender",
        "message": "message",
        "number": "msisdn",
    },
}

MESSAGE_ID_PATTERNS = [
    re.compile(r"message[_\s]?id[:\s]+([a-zA-Z0-9-]+)", re.IGNORECASE),
    re.compile(r"\bid[:\s]+([a-zA-Z0-9-]+)", re.IGNORECASE),
    re.compile(r"success[:\s]+([a-zA-Z0-9-]+)", re.IGNORECASE),
]


def format_phone_number(phone_number: str) -> str:
    """Strip formatting and add the 88 country code to local numbers."""
    cleaned = re.sub(r"\D", "", phone_number)
    if cleaned.startswith("0"):
        return "88" + cleaned
    if cleaned.startswith("88"):
        return cleaned
    if len(cleaned) == 11 and cleaned.startswith("1"):
        return "88" + cleaned
    return cleaned


def format_sms_message(subject: str | None, content: str, priority: Priority) -> str:
    message = f"{subject}\n\n{content}" if subject else content
    if priority is Priority.HIGH:
        message = URGENT_PREFIX + message
    if len(message) > MAX_SMS_LENGTH:
        message = message[: MAX_SMS_LENGTH - 3] + "..."
    return message


def parse_message_id(response_text: str) -> str | None:
    try:
        body = json.loads(response_text)
    except ValueError:
        body = None

    if isinstance(body, dict):
        for key in ("messageId", "message_id", "id", "smsId"):
            if body.get(key):
                return str(body[key])
        return None

    for pattern in MESSAGE_ID_PATTERNS:
        match = pattern.search(response_text)
        if match:
            return match.group(1)
    return None


class SmsSender(ChannelSender):
    channel = Channel.SMS

    def __init__(
        self,
        api_url: str | None,
        api_key: str | None,
        *,
        gateway_name: str = "generic",
        sender_id: str = "EduPro",
        method: str = "POST",
        additional_params: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.gateway_name = gateway_name if gateway_name in GATEWAY_PARAMETERS else "generic"
        self.sender_id = sender_id
        self.method = method.upper()
        self.additional_params = additional_params or {}
        self._client = client

        if self.configured:
            logger.info("SMS gateway initialized", gateway=self.gateway_name)
        else:
            logger.warning("SMS gateway not configured. SMS notifications will not work.")

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmsSender":
        additional: dict[str, str] = {}
        if settings.SMS_ADDITIONAL_PARAMS:
            try:
                additional = json.loads(settings.SMS_ADDITIONAL_PARAMS)
            except ValueError:
                logger.warning("Invalid SMS_ADDITIONAL_PARAMS, ignoring")

        return cls(
            settings.SMS_API_URL,
            settings.SMS_API_KEY,
            gateway_name=settings.SMS_GATEWAY_NAME,
            sender_id=settings.SMS_SENDER_ID,
            method=settings.SMS_METHOD,
            additional_params=additional,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_url and self.api_key)

    def build_params(self, phone_number: str, message: str) -> dict[str, str]:
        names = GATEWAY_PARAMETERS[self.gateway_name]
        params = {
            names["api_key"]: self.api_key,
            names["sender_id"]: self.sender_id,
            names["message"]: message,
            names["number"]: phone_number,
        }
        params.update(self.additional_params)
        return params

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=REQUEST_TIMEOUT_SECONDS, headers={"User-Agent": USER_AGENT}
            )
        return self._client

    async def _send(
        self,
        recipient: str,
        subject: str | None,
        content: str,
        payload: NotificationPayload | None,
        priority: Priority,
    ) -> DeliveryResult:
        phone_number = format_phone_number(recipient)
        if not phone_number:
            raise ChannelSenderError(f"Invalid phone number: {recipient!r}", retryable=False)

        params = self.build_params(phone_number, format_sms_message(subject, content, priority))
        client = self._get_client()

        try:
            if self.method == "GET":
                response = await client.get(self.api_url, params=params)
            else:
                response = await client.post(self.api_url, json=params)
        except httpx.HTTPError as e:
            raise ChannelSenderError(f"SMS gateway request failed: {e}") from e

        if response.is_error:
            raise ChannelSenderError(
                f"SMS gateway error: {response.status_code} - {response.text[:200]}",
                retryable=response.status_code >= 500,
            )

        message_id = parse_message_id(response.text)
        logger.info("SMS sent", gateway=self.gateway_name, message_id=message_id)
        return DeliveryResult(success=True, message_id=message_id)
