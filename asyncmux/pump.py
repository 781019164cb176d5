"""InputPump: drives one producer and forwards each item to the mux broadcast."""

import asyncio
import enum
from typing import TYPE_CHECKING, Any, AsyncIterable, Optional

from asyncmux.observability import get_logger

if TYPE_CHECKING:
    from asyncmux.mux import Multiplexer


class PumpState(str, enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class InputPump:
    """
    Iterates a producer once and calls mux.push() for every item.

    Cancellation is cooperative: the flag (and the mux stop flag) are checked
    once per produced item, so a pump waiting on its producer only notices at
    the next item or when the producer ends. Producer errors end this pump
    only; they are logged and never re-raised.
    """

    def __init__(self, mux: "Multiplexer", producer: AsyncIterable[Any], input_id: str) -> None:
        self._mux = mux
        self._producer = producer
        self._input_id = input_id
        self._cancelled = False
        self._state = PumpState.RUNNING
        self._task: Optional[asyncio.Task] = None
        self._logger = get_logger("asyncmux.pump", mux.settings.log_level)

    @property
    def input_id(self) -> str:
        return self._input_id

    @property
    def state(self) -> PumpState:
        return self._state

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    def cancel(self) -> None:
        """Request the pump to stop at the next item boundary (idempotent)."""
        self._cancelled = True

    def start(self) -> asyncio.Task:
        """Schedule run() on the running loop. Requires a running event loop."""
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(
                self.run(), name=f"asyncmux-input-{self._input_id}"
            )
        return self._task

    async def run(self) -> None:
        forwarded = 0
        try:
            async for item in self._producer:
                if self._cancelled or self._mux.stopped:
                    self._state = PumpState.CANCELLED
                    break
                self._mux.push(item)
                forwarded += 1
            else:
                self._state = PumpState.COMPLETED
        except Exception as e:
            self._state = PumpState.FAILED
            self._logger.exception(
                "producer_failed",
                extra={"input_id": self._input_id, "forwarded": forwarded, "error": str(e)},
            )
        finally:
            if self._state is PumpState.RUNNING:
                # Only task cancellation leaves the loop without a state.
                self._state = PumpState.CANCELLED
            if self._state is not PumpState.COMPLETED:
                await self._close_producer()
            self._logger.info(
                "input_finished",
                extra={"input_id": self._input_id, "state": self._state.value, "forwarded": forwarded},
            )
            self._mux._input_finished(self)

    async def _close_producer(self) -> None:
        aclose = getattr(self._producer, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as e:
            self._logger.exception(
                "producer_close_failed",
                extra={"input_id": self._input_id, "error": str(e)},
            )

    def __repr__(self) -> str:
        return f"InputPump(id={self._input_id!r}, state={self._state.value})"


class InputHandle:
    """
    Handle returned by Multiplexer.in_(). Calling it cancels the input.

    Cancelling is idempotent and takes effect at the producer's next item.
    """

    def __init__(self, pump: InputPump) -> None:
        self._pump = pump

    @property
    def input_id(self) -> str:
        return self._pump.input_id

    @property
    def state(self) -> PumpState:
        return self._pump.state

    @property
    def done(self) -> bool:
        task = self._pump.task
        return task is not None and task.done()

    def cancel(self) -> None:
        self._pump.cancel()

    def __call__(self) -> None:
        self._pump.cancel()

    async def wait(self) -> PumpState:
        """Wait until the pump has finished and return its final state."""
        task = self._pump.task
        if task is not None and not task.done():
            await asyncio.wait({task})
        return self._pump.state

    def __repr__(self) -> str:
        return f"InputHandle(id={self.input_id!r}, state={self.state.value})"
