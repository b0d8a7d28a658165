import pytest

from relay import CallbackHandle, ChannelRegistry


class Recorder:
    """Collects envelopes handed to a CallbackHandle."""

    def __init__(self):
        self.received = []

    def __call__(self, envelope):
        self.received.append(envelope.to_dict())


@pytest.fixture
def registry() -> ChannelRegistry:
    return ChannelRegistry()


@pytest.fixture
def make_handle():
    def _make(handle_id=None):
        recorder = Recorder()
        return CallbackHandle(recorder, handle_id=handle_id), recorder
    return _make
