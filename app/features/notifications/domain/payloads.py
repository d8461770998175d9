"""
Channel-specific structured payloads.

Each notification job carries at most one payload whose ``channel`` tag
must match the job channel. Payloads are stored as JSONB and validated
back into the right model on load.
"""

from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter


class _BasePayload(BaseModel):
    # Free-form string tags, e.g. bulk_job_id / recipient_id
    metadata: dict[str, str] = Field(default_factory=dict)


class EmailPayload(_BasePayload):
    channel: Literal["EMAIL"] = "EMAIL"
    html: str | None = None
    reply_to: str | None = None


class SmsPayload(_BasePayload):
    channel: Literal["SMS"] = "SMS"


class PushPayload(_BasePayload):
    channel: Literal["PUSH"] = "PUSH"
    url: str | None = None
    icon: str | None = None
    tag: str | None = None
    require_interaction: bool = False


class InAppPayload(_BasePayload):
    channel: Literal["IN_APP"] = "IN_APP"
    link: str | None = None
    category: str | None = None


NotificationPayload = Annotated[
    EmailPayload | SmsPayload | PushPayload | InAppPayload,
    Field(discriminator="channel"),
]

payload_adapter: TypeAdapter[NotificationPayload] = TypeAdapter(NotificationPayload)

_PAYLOAD_BY_CHANNEL: dict[str, type[_BasePayload]] = {
    "EMAIL": EmailPayload,
    "SMS": SmsPayload,
    "PUSH": PushPayload,
    "IN_APP": InAppPayload,
}


def empty_payload(channel: str, metadata: dict[str, str] | None = None) -> NotificationPayload:
    """Default payload for a channel, optionally tagged with metadata."""
    return _PAYLOAD_BY_CHANNEL[channel](metadata=metadata or {})
