"""In-memory channel registry: channel name -> live subscriber handles, with fan-out."""

import threading
from typing import Any, Dict, List, Optional, Set, Union

from relay.errors import ChannelConflict, DeliveryError, validate_channel
from relay.message import Envelope
from relay.observability import Metrics, get_logger
from relay.subscriber import SubscriberHandle


class ChannelRegistry:
    """
    Tracks which handles belong to which channel and broadcasts to them.

    A channel is present iff it has at least one handle, and a handle is on at
    most one channel. One lock guards the bookkeeping; it is held only to
    mutate the maps or copy a channel's handle set, never while delivering,
    closing or logging.
    """

    def __init__(self, metrics: Optional[Metrics] = None) -> None:
        self._channels: Dict[str, Set[SubscriberHandle]] = {}
        self._memberships: Dict[SubscriberHandle, str] = {}
        self._lock = threading.Lock()
        self._metrics = metrics if metrics is not None else Metrics()
        self._logger = get_logger("relay.registry")

    @property
    def metrics(self) -> Metrics:
        return self._metrics

    def subscribe(self, channel: str, handle: SubscriberHandle) -> bool:
        """
        Add handle to channel, creating the channel on first subscribe.
        Returns True if added, False if it was already there or is closed.
        Raises InvalidChannel for an empty channel and ChannelConflict if the
        handle is on another channel.
        """
        validate_channel(channel)
        if not handle.is_live():
            self._logger.warning(
                "subscribe_closed_handle",
                extra={"channel": channel, "handle_id": handle.handle_id},
            )
            return False
        with self._lock:
            current = self._memberships.get(handle)
            if current == channel:
                return False
            if current is not None:
                raise ChannelConflict(handle.handle_id, current, channel)
            self._channels.setdefault(channel, set()).add(handle)
            self._memberships[handle] = channel
            self._update_gauges_locked()
        if not handle.is_live():
            # closed while we were inserting; its own unsubscribe may already have run
            self.unsubscribe(channel, handle)
            return False
        self._metrics.increment("handles_subscribed")
        handle.on_subscribe(channel)
        return True

    def unsubscribe(self, channel: str, handle: SubscriberHandle) -> bool:
        """Remove handle from channel, pruning the channel once empty. Unknown pairs are a no-op."""
        with self._lock:
            removed = self._remove_locked(channel, handle)
        if removed:
            self._metrics.increment("handles_unsubscribed")
            handle.on_unsubscribe(channel)
        return removed

    def evict(self, handle: SubscriberHandle) -> bool:
        """Remove handle from whichever channel it is on."""
        with self._lock:
            channel = self._memberships.get(handle)
            removed = channel is not None and self._remove_locked(channel, handle)
        if removed:
            self._metrics.increment("handles_unsubscribed")
            handle.on_unsubscribe(channel)
        return removed

    def _remove_locked(self, channel: str, handle: SubscriberHandle) -> bool:
        handles = self._channels.get(channel)
        if handles is None or handle not in handles:
            return False
        handles.discard(handle)
        del self._memberships[handle]
        if not handles:
            del self._channels[channel]
        self._update_gauges_locked()
        return True

    def _update_gauges_locked(self) -> None:
        self._metrics.set_gauge("channels", len(self._channels))
        self._metrics.set_gauge("subscribers", len(self._memberships))
        self._metrics.raise_gauge("subscribers_peak", len(self._memberships))

    def publish(self, channel: str, message: Any) -> int:
        """
        Deliver {channel, message} to every live handle on channel.

        Returns how many handles the envelope was handed to; 0 when nobody is
        subscribed, which is not an error. A handle that is closed or fails
        delivery is skipped, closed and removed; the broadcast carries on.
        """
        with self._lock:
            handles = self._channels.get(channel)
            snapshot = list(handles) if handles else []
        self._metrics.increment("messages_published")
        if not snapshot:
            self._metrics.increment("messages_dropped_no_subscribers")
            self._logger.info("no_subscribers", extra={"channel": channel})
            return 0

        envelope = Envelope(channel=channel, message=message)
        self._metrics.raise_gauge("fanout_peak", len(snapshot))
        self._logger.info(
            "publishing",
            extra={"channel": channel, "subscriber_count": len(snapshot)},
        )
        delivered = 0
        dead: List[SubscriberHandle] = []
        for handle in snapshot:
            if not handle.is_live():
                dead.append(handle)
                continue
            try:
                handle.deliver(envelope)
            except DeliveryError as e:
                self._metrics.increment("delivery_failures")
                self._logger.warning(
                    "delivery_failed",
                    extra={"channel": channel, "handle_id": handle.handle_id, "error": str(e)},
                )
                dead.append(handle)
                continue
            delivered += 1

        for handle in dead:
            handle.close()
            self.unsubscribe(channel, handle)
        self._metrics.increment("deliveries", delivered)
        return delivered

    def channel_of(self, handle: SubscriberHandle) -> Optional[str]:
        """Return the channel handle is subscribed to, or None."""
        with self._lock:
            return self._memberships.get(handle)

    def subscribers(self, channel: str) -> List[SubscriberHandle]:
        """Return a copy of the handles on channel (empty if absent)."""
        with self._lock:
            return list(self._channels.get(channel, ()))

    def has_channel(self, channel: str) -> bool:
        with self._lock:
            return channel in self._channels

    def __contains__(self, channel: object) -> bool:
        return isinstance(channel, str) and self.has_channel(channel)

    def channel_count(self) -> int:
        """Number of channels with at least one subscriber."""
        with self._lock:
            return len(self._channels)

    def subscriber_count(self) -> int:
        """Number of subscribed handles across all channels."""
        with self._lock:
            return len(self._memberships)

    def list_channels(self) -> List[Dict[str, Union[str, int]]]:
        """Return [{name, subscribers}] for each channel."""
        with self._lock:
            return [
                {"name": name, "subscribers": len(handles)}
                for name, handles in self._channels.items()
            ]

    def drain(self) -> int:
        """Detach and close every handle (shutdown). Returns the number closed."""
        with self._lock:
            memberships = list(self._memberships.items())
            self._channels.clear()
            self._memberships.clear()
            self._update_gauges_locked()
        for handle, channel in memberships:
            handle.close()
            handle.on_unsubscribe(channel)
        if memberships:
            self._metrics.increment("handles_unsubscribed", len(memberships))
        self._logger.info("registry_drained", extra={"handles": len(memberships)})
        return len(memberships)

    def __repr__(self) -> str:
        return (
            f"ChannelRegistry(channels={self.channel_count()}, "
            f"subscribers={self.subscriber_count()})"
        )
