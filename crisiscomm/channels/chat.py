"""
Chat webhook channels — Slack and Microsoft Teams incoming webhooks.

Both have the same shape: POST a JSON payload to a configured URL.
Only the payload differs.
"""

from typing import Optional

import httpx
import structlog

from crisiscomm.channels.base import DeliveryResult
from crisiscomm.exceptions import ChannelDeliveryError
from crisiscomm.schemas.room import Channel, Communication

logger = structlog.get_logger(__name__)


class ChatWebhookSender:
    """Base for incoming-webhook chat channels."""

    channel: Channel

    def __init__(
        self,
        webhook_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._webhook_url = webhook_url
        self._timeout = timeout
        self._transport = transport

    def build_payload(self, communication: Communication) -> dict:
        raise NotImplementedError

    async def send(self, communication: Communication) -> DeliveryResult:
        payload = self.build_payload(communication)
        status = await self.post(payload)
        logger.info(
            "chat_communication_sent",
            channel=self.channel.value,
            communication_id=communication.id,
            status=status,
        )
        return DeliveryResult.sent(provider_ref=f"HTTP {status}")

    async def post(self, payload: dict) -> int:
        """POST the payload. Returns the HTTP status."""
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(self._webhook_url, json=payload)
        except httpx.HTTPError as e:
            raise ChannelDeliveryError(self.channel, str(e)) from e

        if response.status_code >= 400:
            logger.warning(
                "chat_webhook_rejected",
                channel=self.channel.value,
                status=response.status_code,
            )
            raise ChannelDeliveryError(self.channel, f"HTTP {response.status_code}")
        return response.status_code


class SlackSender(ChatWebhookSender):
    channel = Channel.SLACK

    def build_payload(self, communication: Communication) -> dict:
        return {
            "text": communication.subject,
            "blocks": [
                {
                    "type": "section",
                    "text": {
                        "type": "mrkdwn",
                        "text": f"*{communication.subject}*\n\n{communication.content}",
                    },
                }
            ],
        }


class TeamsSender(ChatWebhookSender):
    channel = Channel.TEAMS

    def build_payload(self, communication: Communication) -> dict:
        return {
            "title": communication.subject,
            "text": communication.content,
            "themeColor": "#0078D4",
        }
