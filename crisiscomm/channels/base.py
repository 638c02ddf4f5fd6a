"""
Channel sender contract.

Every channel exposes the same shape: send(communication) -> DeliveryResult.
Senders may raise ChannelDeliveryError; the dispatcher converts it.
"""

from typing import Optional, Protocol

from pydantic import BaseModel

from crisiscomm.schemas.room import Communication, DeliveryStatus


class DeliveryResult(BaseModel):
    status: DeliveryStatus
    provider_ref: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def sent(cls, provider_ref: Optional[str] = None) -> "DeliveryResult":
        return cls(status=DeliveryStatus.SENT, provider_ref=provider_ref)

    @classmethod
    def failed(cls, error: str) -> "DeliveryResult":
        return cls(status=DeliveryStatus.FAILED, error=error)


class ChannelSender(Protocol):
    """Protocol for channel senders."""

    async def send(self, communication: Communication) -> DeliveryResult:
        """
        Deliver a communication through this channel.

        Returns:
            DeliveryResult with status sent|failed
        """
        ...
