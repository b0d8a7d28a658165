"""Observability: logging and metrics for the channel relay."""

from relay.observability.logger import get_logger
from relay.observability.metrics import Metrics

__all__ = ["get_logger", "Metrics"]
