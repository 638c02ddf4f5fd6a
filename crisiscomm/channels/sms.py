"""
SMS channel via the Twilio Messages API.

One message per recipient, sent concurrently. Each recipient's outcome is
independent; the communication records a single aggregate status
(sent if at least one recipient was reached).
"""

import asyncio
from typing import Optional

import httpx
import structlog
from pydantic import BaseModel

from crisiscomm.channels.base import DeliveryResult
from crisiscomm.exceptions import ChannelDeliveryError
from crisiscomm.schemas.room import Channel, Communication, Recipient

logger = structlog.get_logger(__name__)


class TwilioConfig(BaseModel):
    account_sid: str
    auth_token: str
    from_number: str
    timeout_seconds: float = 10.0


class SmsSender:
    """
    SMS sender using the Twilio REST API.

    Usage:
        sender = SmsSender(TwilioConfig(account_sid=..., auth_token=..., from_number=...))
        result = await sender.send(communication)
    """

    TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"

    def __init__(
        self,
        config: TwilioConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._config = config
        self._transport = transport

    async def send(self, communication: Communication) -> DeliveryResult:
        if not communication.recipients:
            raise ChannelDeliveryError(Channel.SMS, "No recipients")

        body = f"{communication.subject}\n\n{communication.content}"
        async with httpx.AsyncClient(
            base_url=self.TWILIO_API_BASE,
            timeout=httpx.Timeout(self._config.timeout_seconds),
            auth=(self._config.account_sid, self._config.auth_token),
            transport=self._transport,
        ) as client:
            outcomes = await asyncio.gather(
                *(self._send_one(client, body, r) for r in communication.recipients),
                return_exceptions=True,
            )

        sids: list[str] = []
        errors: list[str] = []
        for recipient, outcome in zip(communication.recipients, outcomes):
            if isinstance(outcome, Exception):
                errors.append(f"{recipient.name or recipient.phone}: {outcome}")
            else:
                sids.append(outcome)

        logger.info(
            "sms_communication_sent",
            communication_id=communication.id,
            delivered=len(sids),
            failed=len(errors),
        )
        if not sids:
            return DeliveryResult.failed("; ".join(errors))
        result = DeliveryResult.sent(provider_ref=",".join(sids))
        if errors:
            result.error = "; ".join(errors)
        return result

    async def _send_one(
        self, client: httpx.AsyncClient, body: str, recipient: Recipient
    ) -> str:
        if not recipient.phone:
            raise ChannelDeliveryError(Channel.SMS, "Recipient has no phone number")
        return await self.send_message(client, body, self._config.from_number, recipient.phone)

    async def send_message(
        self, client: httpx.AsyncClient, body: str, from_: str, to: str
    ) -> str:
        """Send one SMS. Returns the Twilio message SID."""
        try:
            response = await client.post(
                f"/Accounts/{self._config.account_sid}/Messages.json",
                data={"Body": body, "From": from_, "To": self._format_number(to)},
            )
        except httpx.HTTPError as e:
            logger.error("twilio_http_error", error=str(e))
            raise ChannelDeliveryError(Channel.SMS, str(e)) from e

        data = response.json() if response.content else {}
        if not response.is_success:
            logger.error(
                "sms_send_failed",
                error_code=data.get("code"),
                error_message=data.get("message"),
            )
            raise ChannelDeliveryError(
                Channel.SMS, data.get("message") or f"HTTP {response.status_code}"
            )
        return data.get("sid", "")

    @staticmethod
    def _format_number(phone: str) -> str:
        phone = phone.replace(" ", "").replace("-", "")
        if not phone.startswith("+"):
            phone = "+" + phone
        return phone
