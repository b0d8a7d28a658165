"""Tests for ChannelRegistry membership, pruning and fan-out."""

import threading

import pytest

from relay import CallbackHandle, ChannelConflict, ChannelRegistry, InvalidChannel


def _unwritable(envelope):
    raise ConnectionResetError("peer gone")


def test_subscribe_then_unsubscribe_prunes_channel(registry, make_handle):
    handle, _ = make_handle()
    assert registry.subscribe("room1", handle) is True
    assert "room1" in registry
    assert registry.unsubscribe("room1", handle) is True
    assert "room1" not in registry
    assert registry.channel_count() == 0
    assert registry.subscriber_count() == 0


def test_channel_kept_while_other_subscribers_remain(registry, make_handle):
    h1, _ = make_handle()
    h2, _ = make_handle()
    registry.subscribe("room1", h1)
    registry.subscribe("room1", h2)
    registry.unsubscribe("room1", h1)
    assert registry.subscribers("room1") == [h2]


def test_publish_without_subscribers_returns_zero(registry):
    assert registry.publish("nobody-here", {"text": "hi"}) == 0
    assert registry.metrics.get_counter("messages_dropped_no_subscribers") == 1
    assert "nobody-here" not in registry


def test_publish_delivers_envelope_to_every_subscriber(registry, make_handle):
    h1, r1 = make_handle()
    h2, r2 = make_handle()
    registry.subscribe("room1", h1)
    registry.subscribe("room1", h2)

    assert registry.publish("room1", "hello") == 2
    assert r1.received == [{"channel": "room1", "message": "hello"}]
    assert r2.received == [{"channel": "room1", "message": "hello"}]


def test_publish_only_reaches_named_channel(registry, make_handle):
    h1, r1 = make_handle()
    h2, r2 = make_handle()
    registry.subscribe("room1", h1)
    registry.subscribe("room2", h2)

    assert registry.publish("room2", {"n": 1}) == 1
    assert r1.received == []
    assert r2.received == [{"channel": "room2", "message": {"n": 1}}]


def test_channel_names_are_exact_match(registry, make_handle):
    handle, recorder = make_handle()
    registry.subscribe("Room1", handle)
    assert registry.publish("room1", "x") == 0
    assert registry.publish("Room1 ", "x") == 0
    assert recorder.received == []


def test_double_subscribe_is_idempotent(registry, make_handle):
    handle, recorder = make_handle()
    assert registry.subscribe("room1", handle) is True
    assert registry.subscribe("room1", handle) is False

    assert registry.publish("room1", "once") == 1
    assert len(recorder.received) == 1
    assert registry.subscriber_count() == 1


def test_handle_cannot_join_second_channel(registry, make_handle):
    handle, _ = make_handle("h1")
    registry.subscribe("room1", handle)
    with pytest.raises(ChannelConflict):
        registry.subscribe("room2", handle)
    assert registry.channel_of(handle) == "room1"
    assert "room2" not in registry


@pytest.mark.parametrize("channel", ["", None, 42])
def test_invalid_channel_rejected(registry, make_handle, channel):
    handle, _ = make_handle()
    with pytest.raises(InvalidChannel):
        registry.subscribe(channel, handle)
    assert registry.subscriber_count() == 0


def test_invalid_channel_is_a_value_error(registry, make_handle):
    handle, _ = make_handle()
    with pytest.raises(ValueError):
        registry.subscribe("", handle)


def test_closed_handle_not_admitted(registry, make_handle):
    handle, _ = make_handle()
    handle.close()
    assert registry.subscribe("room1", handle) is False
    assert "room1" not in registry


def test_unsubscribe_unknown_is_noop(registry, make_handle):
    handle, _ = make_handle()
    assert registry.unsubscribe("missing", handle) is False
    registry.subscribe("room1", handle)
    other, _ = make_handle()
    assert registry.unsubscribe("room1", other) is False
    assert registry.unsubscribe("room2", handle) is False
    assert registry.unsubscribe("room1", handle) is True
    assert registry.unsubscribe("room1", handle) is False


def test_unwritable_handle_is_evicted(registry, make_handle):
    bad = CallbackHandle(_unwritable, handle_id="bad")
    good, recorder = make_handle("good")
    registry.subscribe("room1", bad)
    registry.subscribe("room1", good)

    assert registry.publish("room1", "first") == 1
    assert recorder.received == [{"channel": "room1", "message": "first"}]
    assert bad.closed
    assert registry.subscribers("room1") == [good]
    assert registry.channel_of(bad) is None
    assert registry.metrics.get_counter("delivery_failures") == 1

    assert registry.publish("room1", "second") == 1
    assert registry.metrics.get_counter("delivery_failures") == 1


def test_only_unwritable_handle_leaves_no_channel(registry):
    bad = CallbackHandle(_unwritable)
    registry.subscribe("room1", bad)
    assert registry.publish("room1", "x") == 0
    assert "room1" not in registry
    assert registry.subscriber_count() == 0


def test_closed_handle_skipped_and_pruned(registry, make_handle):
    h1, r1 = make_handle()
    h2, r2 = make_handle()
    registry.subscribe("room1", h1)
    registry.subscribe("room1", h2)
    h1.close()

    assert registry.publish("room1", "hello") == 1
    assert r1.received == []
    assert len(r2.received) == 1
    assert registry.subscribers("room1") == [h2]


def test_evict_removes_from_current_channel(registry, make_handle):
    handle, _ = make_handle()
    registry.subscribe("room1", handle)
    assert registry.evict(handle) is True
    assert registry.evict(handle) is False
    assert "room1" not in registry


def test_list_channels_and_gauges(registry, make_handle):
    h1, _ = make_handle()
    h2, _ = make_handle()
    h3, _ = make_handle()
    registry.subscribe("a", h1)
    registry.subscribe("a", h2)
    registry.subscribe("b", h3)

    channels = sorted(registry.list_channels(), key=lambda c: c["name"])
    assert channels == [{"name": "a", "subscribers": 2}, {"name": "b", "subscribers": 1}]
    assert registry.metrics.get_gauge("channels") == 2
    assert registry.metrics.get_gauge("subscribers") == 3


def test_drain_closes_everything(registry, make_handle):
    handles = [make_handle()[0] for _ in range(3)]
    registry.subscribe("a", handles[0])
    registry.subscribe("a", handles[1])
    registry.subscribe("b", handles[2])

    assert registry.drain() == 3
    assert registry.channel_count() == 0
    assert all(h.closed for h in handles)
    assert registry.publish("a", "late") == 0


def test_subscribe_during_delivery_misses_in_flight_message(registry, make_handle):
    late, late_recorder = make_handle("late")

    def subscribe_late(envelope):
        registry.subscribe("room1", late)

    early = CallbackHandle(subscribe_late, handle_id="early")
    registry.subscribe("room1", early)

    assert registry.publish("room1", "m1") == 1
    assert late_recorder.received == []
    assert registry.publish("room1", "m2") == 2
    assert late_recorder.received == [{"channel": "room1", "message": "m2"}]


def test_unsubscribe_during_delivery_does_not_deadlock(registry, make_handle):
    other, other_recorder = make_handle()

    def leave(envelope):
        registry.unsubscribe("room1", other)

    leaver = CallbackHandle(leave)
    registry.subscribe("room1", leaver)
    registry.subscribe("room1", other)

    # other was in the snapshot and still live, so it gets this one message
    assert registry.publish("room1", "x") == 2
    assert registry.subscribers("room1") == [leaver]
    assert len(other_recorder.received) == 1
    assert registry.publish("room1", "y") == 1
    assert len(other_recorder.received) == 1


class _ClosesMidSubscribe(CallbackHandle):
    """Closes (and unsubscribes itself) right after passing the pre-insert liveness check."""

    def __init__(self, registry):
        super().__init__(lambda env: None, handle_id="racy")
        self._registry = registry
        self._checks = 0

    def is_live(self):
        self._checks += 1
        if self._checks == 1:
            self.close()
            self._registry.unsubscribe("room1", self)
            return True
        return super().is_live()


def test_handle_closed_during_subscribe_is_not_left_behind(registry):
    handle = _ClosesMidSubscribe(registry)
    assert registry.subscribe("room1", handle) is False
    assert "room1" not in registry
    assert registry.subscriber_count() == 0
    assert registry.channel_of(handle) is None


def test_peak_gauges(registry, make_handle):
    handles = [make_handle()[0] for _ in range(3)]
    for handle in handles:
        registry.subscribe("room1", handle)
    registry.publish("room1", "x")
    registry.unsubscribe("room1", handles[0])
    assert registry.metrics.get_gauge("subscribers") == 2
    assert registry.metrics.get_gauge("subscribers_peak") == 3
    assert registry.metrics.get_gauge("fanout_peak") == 3


def test_slow_subscriber_does_not_block_registry(registry):
    entered = threading.Event()
    release = threading.Event()

    def slow(envelope):
        entered.set()
        release.wait(5)

    registry.subscribe("slow", CallbackHandle(slow))
    publisher = threading.Thread(target=registry.publish, args=("slow", "x"))
    publisher.start()
    try:
        assert entered.wait(5)
        # publish is parked inside delivery; bookkeeping must still go through
        late = CallbackHandle(lambda env: None)
        assert registry.subscribe("other", late) is True
        assert registry.publish("other", "y") == 1
        assert registry.unsubscribe("other", late) is True
    finally:
        release.set()
        publisher.join(5)
    assert not publisher.is_alive()


def test_concurrent_subscribe_publish_unsubscribe(registry):
    errors = []

    def churn(n):
        try:
            for i in range(200):
                handle = CallbackHandle(lambda env: None, handle_id=f"c{n}-{i}")
                registry.subscribe("busy", handle)
                registry.unsubscribe("busy", handle)
        except Exception as e:
            errors.append(e)

    def publish_loop():
        try:
            for _ in range(300):
                registry.publish("busy", "tick")
        except Exception as e:
            errors.append(e)

    publishers = [threading.Thread(target=publish_loop) for _ in range(2)]
    churners = [threading.Thread(target=churn, args=(n,)) for n in range(4)]
    for t in publishers + churners:
        t.start()
    for t in publishers + churners:
        t.join(10)

    assert errors == []
    assert "busy" not in registry
    assert registry.subscriber_count() == 0
