"""In-process handle that passes envelopes straight to a callable."""

from typing import Any, Callable, Optional

from relay.message import Envelope
from relay.subscriber import SubscriberHandle


class CallbackHandle(SubscriberHandle):
    """Handle for in-process consumers; the callback must not block."""

    def __init__(
        self,
        callback: Callable[[Envelope], Any],
        handle_id: Optional[str] = None,
    ) -> None:
        super().__init__(handle_id)
        self._callback = callback

    def _write(self, envelope: Envelope) -> None:
        self._callback(envelope)
        self._logger.debug(
            "message_received",
            extra={"channel": envelope.channel, "handle_id": self.handle_id},
        )
