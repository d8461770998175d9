"""
Channel senders for notification delivery.
"""

from .base import ChannelSender, ChannelSenderError, DeliveryResult
from .email_sender import EmailSender
from .in_app_sender import InAppSender
from .push_sender import PushSender
from .sms_sender import SmsSender

__all__ = [
    "ChannelSender",
    "ChannelSenderError",
    "DeliveryResult",
    "EmailSender",
    "InAppSender",
    "PushSender",
    "SmsSender",
]
