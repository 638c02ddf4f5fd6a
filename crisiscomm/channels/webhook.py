"""
Generic webhook channel.

POSTs {type, subject, content, recipients, timestamp} to the configured URL.
The URL is checked once, when the sender is built: a crisis broadcast must
never be pointed at loopback, link-local or private-network hosts.
"""

import ipaddress
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse

import httpx
import structlog

from crisiscomm.channels.base import DeliveryResult
from crisiscomm.exceptions import ChannelDeliveryError
from crisiscomm.schemas.room import Channel, Communication

logger = structlog.get_logger(__name__)

_BLOCKED_HOSTNAMES = frozenset({"localhost", "localhost.localdomain"})


def webhook_url_problem(url: str) -> Optional[str]:
    """Why `url` cannot receive crisis broadcasts, or None when it can."""
    if not url:
        return "URL is empty"
    try:
        parsed = urlparse(url)
    except ValueError:
        return "Malformed URL"

    if parsed.scheme not in ("https", "http"):
        return f"Scheme '{parsed.scheme}' not allowed"
    if parsed.username or parsed.password:
        return "Embedded credentials not allowed"
    host = (parsed.hostname or "").lower()
    if not host:
        return "No hostname"
    if host in _BLOCKED_HOSTNAMES:
        return f"Host '{host}' not allowed"

    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return None
    if ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_reserved or ip.is_unspecified:
        return f"Non-public address '{host}' not allowed"
    return None


class WebhookSender:
    """
    Dispatch communications to a generic HTTP webhook.

    Raises ValueError at construction when the URL is rejected.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        headers: Optional[dict] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        problem = webhook_url_problem(url)
        if problem is not None:
            raise ValueError(f"Webhook URL rejected: {problem}")
        self._url = url
        self._timeout = timeout
        self._headers = {"Content-Type": "application/json", **(headers or {})}
        self._transport = transport

    async def send(self, communication: Communication) -> DeliveryResult:
        payload = self.build_payload(communication)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(self._url, json=payload, headers=self._headers)
        except httpx.HTTPError as e:
            logger.error("webhook_dispatch_error", communication_id=communication.id, error=str(e))
            raise ChannelDeliveryError(Channel.WEBHOOK, str(e)) from e

        if response.status_code >= 400:
            logger.warning(
                "webhook_communication_failed",
                communication_id=communication.id,
                status=response.status_code,
            )
            raise ChannelDeliveryError(Channel.WEBHOOK, f"HTTP {response.status_code}")

        logger.info(
            "webhook_communication_sent",
            communication_id=communication.id,
            status=response.status_code,
        )
        return DeliveryResult.sent(provider_ref=f"HTTP {response.status_code}")

    @staticmethod
    def build_payload(communication: Communication) -> dict:
        return {
            "type": communication.type.value,
            "subject": communication.subject,
            "content": communication.content,
            "recipients": [r.model_dump(mode="json") for r in communication.recipients],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
