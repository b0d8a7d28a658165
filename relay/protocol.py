"""Protocol shapes for the HTTP push/health endpoints and WebSocket closure."""

from dataclasses import asdict, dataclass
from typing import Any, Dict, List

# ---- WebSocket closure ----

# RFC 6455 policy violation
WS_CLOSE_POLICY_VIOLATION = 1008
CHANNEL_REQUIRED_REASON = "Channel required in URL"


# ---- Push ----

STATUS_SENT = "Message sent"
STATUS_NO_SUBSCRIBERS = "No subscribers, but message accepted"


@dataclass
class SendResponse:
    """Response for POST /send/{channel}; zero deliveries is still accepted."""
    channel: str
    delivered: int

    @property
    def status(self) -> str:
        return STATUS_SENT if self.delivered else STATUS_NO_SUBSCRIBERS

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "channel": self.channel, "delivered": self.delivered}


# ---- Health / stats ----

@dataclass
class HealthResponse:
    """Response for GET /health."""
    uptime_sec: float
    channels: int
    subscribers: int

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["uptime_sec"] = int(self.uptime_sec)
        return d


def stats_response(
    channels: List[Dict[str, Any]],
    metrics: Dict[str, Dict[str, int]],
) -> Dict[str, Any]:
    """Response for GET /stats."""
    return {"channels": channels, "metrics": metrics}


# ---- Errors ----

ERROR_MISSING_MESSAGE = "Missing message in body"
ERROR_CHANNEL_REQUIRED = "Channel required in path"
ERROR_UNAUTHORIZED = "Unauthorized: Missing or invalid Bearer token"
ERROR_FORBIDDEN = "Forbidden: Invalid token"
ERROR_NOT_CONFIGURED = "Bearer token not configured (BEARER_TOKEN env not set)"


def error_body(message: str) -> Dict[str, str]:
    return {"error": message}
