"""
Channel Dispatcher — routes a communication to the sender registered for
its channel.

Failure isolation:
- Unknown channel → failed immediately, no sender invoked
- Sender exception or timeout → failed, error kept on the record
- Nothing raised past dispatch()
"""

import asyncio
from typing import Mapping, Optional

import httpx
import structlog

from crisiscomm.channels.base import ChannelSender, DeliveryResult
from crisiscomm.channels.chat import SlackSender, TeamsSender
from crisiscomm.channels.email import EmailConfig, EmailSender
from crisiscomm.channels.sms import SmsSender, TwilioConfig
from crisiscomm.channels.webhook import WebhookSender
from crisiscomm.config import Settings
from crisiscomm.exceptions import ChannelDeliveryError, UnsupportedChannelError
from crisiscomm.schemas.room import Channel, Communication

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class InternalSender:
    """
    Internal notes — stored on the room only, nothing leaves the system.

    Always available (no external dependencies).
    """

    async def send(self, communication: Communication) -> DeliveryResult:
        logger.info("internal_note_recorded", communication_id=communication.id)
        return DeliveryResult.sent(provider_ref="internal")


class ChannelDispatcher:
    """
    Routes communications to the registered channel sender.

    New channels extend the registry, not this class.
    """

    def __init__(
        self,
        senders: Mapping[Channel, ChannelSender],
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self._senders: dict[Channel, ChannelSender] = dict(senders)
        self._timeout = timeout

    @property
    def channels(self) -> list[Channel]:
        return list(self._senders)

    def register(self, channel: Channel, sender: ChannelSender) -> None:
        self._senders[channel] = sender

    async def dispatch(self, communication: Communication) -> Communication:
        """
        Deliver a pending communication and set its delivery status.

        Returns the same communication, now sent or failed.
        """
        result = await self._deliver(communication)
        communication.mark_delivery(result.status, result.provider_ref, result.error)
        logger.info(
            "communication_dispatched",
            communication_id=communication.id,
            channel=communication.channel,
            recipients=len(communication.recipients),
            status=communication.delivery_status.value,
        )
        return communication

    async def _deliver(self, communication: Communication) -> DeliveryResult:
        try:
            sender = self._resolve(communication.channel)
        except UnsupportedChannelError as e:
            logger.warning("unsupported_channel", channel=communication.channel)
            return DeliveryResult.failed(e.message)

        try:
            return await asyncio.wait_for(sender.send(communication), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.error(
                "channel_send_timeout",
                channel=communication.channel,
                communication_id=communication.id,
                timeout=self._timeout,
            )
            return DeliveryResult.failed(f"Timed out after {self._timeout}s")
        except ChannelDeliveryError as e:
            logger.error(
                "channel_delivery_error",
                channel=communication.channel,
                communication_id=communication.id,
                error=e.message,
            )
            return DeliveryResult.failed(e.message)
        except Exception as e:
            logger.error(
                "channel_dispatch_error",
                channel=communication.channel,
                communication_id=communication.id,
                error=str(e),
            )
            return DeliveryResult.failed(f"{type(e).__name__}: {e}")

    def _resolve(self, channel_name: str) -> ChannelSender:
        try:
            channel = Channel(channel_name)
        except ValueError:
            raise UnsupportedChannelError(channel_name)
        sender = self._senders.get(channel)
        if sender is None:
            raise UnsupportedChannelError(channel_name)
        return sender


def build_default_senders(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict[Channel, ChannelSender]:
    """
    Build the sender registry from configuration.

    Channels without credentials are left out and dispatch as failed.
    """
    timeout = settings.dispatch_timeout_seconds
    senders: dict[Channel, ChannelSender] = {Channel.INTERNAL: InternalSender()}

    if settings.smtp_host:
        senders[Channel.EMAIL] = EmailSender(
            EmailConfig(
                smtp_host=settings.smtp_host,
                smtp_port=settings.smtp_port,
                smtp_user=settings.smtp_user,
                smtp_password=settings.smtp_password,
                from_email=settings.smtp_from,
                timeout_seconds=timeout,
            )
        )
    if settings.slack_webhook_url:
        senders[Channel.SLACK] = SlackSender(settings.slack_webhook_url, timeout, transport)
    if settings.teams_webhook_url:
        senders[Channel.TEAMS] = TeamsSender(settings.teams_webhook_url, timeout, transport)
    if settings.twilio_account_sid and settings.twilio_auth_token:
        senders[Channel.SMS] = SmsSender(
            TwilioConfig(
                account_sid=settings.twilio_account_sid,
                auth_token=settings.twilio_auth_token,
                from_number=settings.twilio_phone_number,
                timeout_seconds=timeout,
            ),
            transport,
        )
    if settings.webhook_url:
        try:
            senders[Channel.WEBHOOK] = WebhookSender(
                settings.webhook_url, timeout, transport=transport
            )
        except ValueError as e:
            logger.error("webhook_url_rejected", url=settings.webhook_url, error=str(e))

    logger.info("channel_senders_configured", channels=[c.value for c in senders])
    return senders
