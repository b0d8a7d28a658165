"""Envelope delivered to subscribers for every publish."""

from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class Envelope:
    """A published message tagged with the channel it arrived on."""

    channel: str
    message: Any

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape: {channel, message}."""
        return {"channel": self.channel, "message": self.message}
