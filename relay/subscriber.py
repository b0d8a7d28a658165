"""Abstract subscriber handle: identity, liveness and a non-blocking deliver primitive."""

import threading
import uuid
from abc import ABC, abstractmethod
from typing import Optional

from relay.errors import DeliveryError, HandleClosed
from relay.message import Envelope
from relay.observability import get_logger


class SubscriberHandle(ABC):
    """
    One live subscriber (usually one connection).

    Handles compare by identity; two handles are never equal. Liveness moves
    from live to closed exactly once and never back.
    """

    def __init__(self, handle_id: Optional[str] = None) -> None:
        self._handle_id = handle_id or f"sub_{uuid.uuid4().hex[:8]}"
        self._closed = False
        self._state_lock = threading.Lock()
        self._logger = get_logger("relay.subscriber")

    @property
    def handle_id(self) -> str:
        return self._handle_id

    @property
    def closed(self) -> bool:
        return self._closed

    def is_live(self) -> bool:
        return not self._closed

    def deliver(self, envelope: Envelope) -> None:
        """
        Hand an envelope to the subscriber without blocking the publisher.
        Raises HandleClosed if the handle is closed and DeliveryError if the write fails.
        """
        if self._closed:
            raise HandleClosed(self._handle_id)
        try:
            self._write(envelope)
        except DeliveryError:
            raise
        except Exception as e:
            raise DeliveryError(self._handle_id, str(e)) from e

    @abstractmethod
    def _write(self, envelope: Envelope) -> None:
        """Push one envelope toward the subscriber. Must return promptly."""

    def close(self) -> bool:
        """Mark closed and release the underlying connection. Returns False if already closed."""
        with self._state_lock:
            if self._closed:
                return False
            self._closed = True
        self._release()
        self._logger.info("handle_closed", extra={"handle_id": self._handle_id})
        return True

    def _release(self) -> None:
        """Free resources held for the subscriber; runs once, after the flag flips."""

    def on_subscribe(self, channel: str) -> None:
        """Called when this handle is added to a channel (for observability)."""
        self._logger.info(
            "subscribed",
            extra={"channel": channel, "handle_id": self._handle_id},
        )

    def on_unsubscribe(self, channel: str) -> None:
        """Called when this handle is removed from a channel (for observability)."""
        self._logger.info(
            "unsubscribed",
            extra={"channel": channel, "handle_id": self._handle_id},
        )

    def __repr__(self) -> str:
        state = "closed" if self._closed else "live"
        return f"{self.__class__.__name__}(id={self._handle_id!r}, {state})"
