"""Observability: event logging and metrics for the multiplexer."""

from asyncmux.observability.logger import EventFormatter, get_logger
from asyncmux.observability.metrics import Metrics

__all__ = ["EventFormatter", "get_logger", "Metrics"]
