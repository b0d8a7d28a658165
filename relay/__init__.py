"""In-memory channel relay: channel registry with non-blocking fan-out to live subscribers."""

from relay.callback_subscriber import CallbackHandle
from relay.connection import ConnectionHandle
from relay.errors import (
    ChannelConflict,
    DeliveryError,
    HandleClosed,
    InvalidChannel,
    RelayError,
)
from relay.message import Envelope
from relay.registry import ChannelRegistry
from relay.subscriber import SubscriberHandle

__all__ = [
    "CallbackHandle",
    "ChannelConflict",
    "ChannelRegistry",
    "ConnectionHandle",
    "DeliveryError",
    "Envelope",
    "HandleClosed",
    "InvalidChannel",
    "RelayError",
    "SubscriberHandle",
]
