"""
Crisis Communication Channels.

Components:
- base: DeliveryResult and the ChannelSender protocol
- email: SMTP sender (one message to all recipients)
- chat: Slack and Teams incoming webhooks
- sms: Twilio sender (one message per recipient, concurrent)
- webhook: Generic JSON webhook with SSRF protection
- dispatcher: Sender registry + failure isolation
"""

from crisiscomm.channels.base import ChannelSender, DeliveryResult
from crisiscomm.channels.dispatcher import (
    ChannelDispatcher,
    InternalSender,
    build_default_senders,
)

__all__ = [
    "ChannelDispatcher",
    "ChannelSender",
    "DeliveryResult",
    "InternalSender",
    "build_default_senders",
]
