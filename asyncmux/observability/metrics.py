"""Broadcast and lifecycle metrics for one mux (items, inputs, outputs)."""

from typing import Dict

# Counters
ITEMS_BROADCAST = "items_broadcast"
ITEMS_DROPPED = "items_dropped"
DELIVERIES = "deliveries"
INPUTS_REGISTERED = "inputs_registered"
INPUTS_COMPLETED = "inputs_completed"
INPUTS_FAILED = "inputs_failed"
INPUTS_CANCELLED = "inputs_cancelled"
OUTPUTS_REGISTERED = "outputs_registered"
OUTPUTS_CLOSED = "outputs_closed"

# Gauges
INPUTS_LIVE = "inputs_live"
OUTPUTS_LIVE = "outputs_live"

COUNTERS = (
    ITEMS_BROADCAST,
    ITEMS_DROPPED,
    DELIVERIES,
    INPUTS_REGISTERED,
    INPUTS_COMPLETED,
    INPUTS_FAILED,
    INPUTS_CANCELLED,
    OUTPUTS_REGISTERED,
    OUTPUTS_CLOSED,
)
GAUGES = (INPUTS_LIVE, OUTPUTS_LIVE)

# Final pump state value -> counter
_FINISHED = {
    "completed": INPUTS_COMPLETED,
    "failed": INPUTS_FAILED,
    "cancelled": INPUTS_CANCELLED,
}


class Metrics:
    """
    In-memory counters and gauges for a Multiplexer.

    Every name is registered up front, so a snapshot always carries the full
    set, zeros included.
    """

    def __init__(self) -> None:
        self._counters: Dict[str, int] = dict.fromkeys(COUNTERS, 0)
        self._gauges: Dict[str, int] = dict.fromkeys(GAUGES, 0)

    def record_broadcast(self, output_count: int) -> None:
        """One item pushed to output_count outputs."""
        self._counters[ITEMS_BROADCAST] += 1
        self._counters[DELIVERIES] += output_count

    def record_dropped(self) -> None:
        """One item pushed after stop."""
        self._counters[ITEMS_DROPPED] += 1

    def record_input_registered(self, live: int) -> None:
        self._counters[INPUTS_REGISTERED] += 1
        self._gauges[INPUTS_LIVE] = live

    def record_input_finished(self, state: str, live: int) -> None:
        """Count a pump's terminal state ("completed", "failed" or "cancelled")."""
        try:
            self._counters[_FINISHED[state]] += 1
        except KeyError:
            raise ValueError(f"not a terminal input state: {state!r}") from None
        self._gauges[INPUTS_LIVE] = live

    def record_output_registered(self, live: int) -> None:
        self._counters[OUTPUTS_REGISTERED] += 1
        self._gauges[OUTPUTS_LIVE] = live

    def record_outputs_closed(self, closed: int, live: int) -> None:
        self._counters[OUTPUTS_CLOSED] += closed
        self._gauges[OUTPUTS_LIVE] = live

    def get_counter(self, name: str) -> int:
        return self._counters.get(name, 0)

    def get_gauge(self, name: str) -> int:
        return self._gauges.get(name, 0)

    def snapshot(self) -> Dict[str, Dict[str, int]]:
        """Return a snapshot of all metrics."""
        return {
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
        }
