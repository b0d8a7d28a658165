"""Exception taxonomy for the channel relay core."""

from typing import Optional


class RelayError(Exception):
    """Base class for relay errors."""


class InvalidChannel(RelayError, ValueError):
    """Channel name is empty or not a string; the connection must not be admitted."""

    def __init__(self, channel: object = None) -> None:
        super().__init__(f"channel name must be a non-empty string, got {channel!r}")
        self.channel = channel


class ChannelConflict(RelayError):
    """A handle is already subscribed to a different channel."""

    def __init__(self, handle_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"handle {handle_id!r} is subscribed to {current!r}, cannot join {requested!r}"
        )
        self.handle_id = handle_id
        self.current = current
        self.requested = requested


class DeliveryError(RelayError):
    """A single subscriber could not accept a delivery."""

    def __init__(self, handle_id: str, reason: Optional[str] = None) -> None:
        message = f"delivery to {handle_id!r} failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.handle_id = handle_id
        self.reason = reason


class HandleClosed(DeliveryError):
    """Delivery attempted on a handle that is no longer live."""

    def __init__(self, handle_id: str) -> None:
        super().__init__(handle_id, "handle is closed")


def validate_channel(channel: object) -> str:
    """Return channel unchanged if it is a non-empty string, else raise InvalidChannel."""
    if not isinstance(channel, str) or not channel:
        raise InvalidChannel(channel)
    return channel
