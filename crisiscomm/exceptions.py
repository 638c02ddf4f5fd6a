"""
Crisis Communication error taxonomy.

Each error carries the HTTP status the API layer maps it to.
ChannelDeliveryError and UnsupportedChannelError never escape the
dispatcher; they surface as deliveryStatus=failed on the record.
"""

from typing import Optional


class CrisisCommError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(CrisisCommError):
    """Room, event, stakeholder or template missing."""

    status_code = 404

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            f"{resource} not found: {identifier}",
            {"resource": resource, "id": identifier},
        )
        self.resource = resource
        self.identifier = identifier


class ValidationError(CrisisCommError):
    """Request rejected before any mutation."""

    status_code = 422


class InvalidTransitionError(ValidationError):
    """Status change not allowed by the room state machine."""

    status_code = 409

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot transition room from '{current}' to '{target}'",
            {"current": current, "target": target},
        )
        self.current = current
        self.target = target


class ConcurrencyError(CrisisCommError):
    """Stale write: the room was modified by another writer."""

    status_code = 409


class ChannelDeliveryError(CrisisCommError):
    """Provider failure inside a channel sender."""

    status_code = 502

    def __init__(self, channel: str, message: str):
        super().__init__(f"{channel}: {message}", {"channel": channel})
        self.channel = channel


class UnsupportedChannelError(ChannelDeliveryError):
    """Channel name not present in the sender registry."""

    def __init__(self, channel: str):
        super().__init__(channel, "Unsupported channel")
