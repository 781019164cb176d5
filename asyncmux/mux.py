"""Multiplexer: M:N broadcast of async producers to independently paced consumers."""

import asyncio
import uuid
import weakref
from typing import Any, AsyncIterable, Dict, List, Optional, Set

from asyncmux.channel import OutputChannel
from asyncmux.config import MuxSettings
from asyncmux.errors import ChannelClosed, MuxStoppedError
from asyncmux.observability import Metrics, get_logger
from asyncmux.pump import InputHandle, InputPump


class OutputStream:
    """
    One consumer's pass over an output channel, created by ``async for``.

    The output is released (channel closed and unregistered) when the stream
    ends, when aclose() is called, or when the stream object is dropped, which
    is what happens when the consumer leaves its ``async for`` by break,
    by raising, or by being cancelled.
    """

    def __init__(self, mux: "Multiplexer", channel: OutputChannel) -> None:
        self._channel = channel
        self._release = weakref.finalize(self, mux._close_output, channel)
        self._release.atexit = False

    def __aiter__(self) -> "OutputStream":
        return self

    async def __anext__(self) -> Any:
        try:
            return await self._channel.dequeue()
        except ChannelClosed:
            self._release()
            raise StopAsyncIteration from None

    async def aclose(self) -> None:
        self._release()


class MuxOutput:
    """
    Consumer side of one output: an async iterable of broadcast items plus stop().

    Iterating hands out an OutputStream, which releases the output on every
    exit path of the consuming loop. ``async with output`` also stops it on
    exit, covering a consumer that never iterated.
    """

    def __init__(self, mux: "Multiplexer", channel: OutputChannel) -> None:
        self._mux = mux
        self._channel = channel

    @property
    def output_id(self) -> str:
        return self._channel.channel_id

    @property
    def pending(self) -> int:
        return self._channel.pending

    @property
    def closed(self) -> bool:
        return self._channel.closed

    def stop(self) -> None:
        """Close this output only. Buffered items are still yielded, then the stream ends."""
        self._mux._close_output(self._channel)

    async def aclose(self) -> None:
        self.stop()

    def __aiter__(self) -> OutputStream:
        return OutputStream(self._mux, self._channel)

    async def __aenter__(self) -> "MuxOutput":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"MuxOutput(id={self.output_id!r}, pending={self.pending}, closed={self.closed})"


class Multiplexer:
    """
    Broadcast router between any number of inputs and outputs on one event loop.

    Every item pushed (directly or by an input) is enqueued on every output
    registered at that moment, in one synchronous pass, so all outputs see
    the same relative order. Outputs are unbounded: a slow consumer never
    holds back an input.
    """

    def __init__(self, name: str = "mux", settings: Optional[MuxSettings] = None) -> None:
        self._name = name
        self._settings = settings or MuxSettings()
        self._stopped = False
        self._outputs: Set[OutputChannel] = set()
        self._pumps: Dict[str, InputPump] = {}
        self._metrics = Metrics()
        self._logger = get_logger(f"asyncmux.mux.{name}", self._settings.log_level)

    @property
    def name(self) -> str:
        return self._name

    @property
    def settings(self) -> MuxSettings:
        return self._settings

    @property
    def metrics(self) -> Metrics:
        return self._metrics

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def input_count(self) -> int:
        """Number of inputs still being pumped."""
        return len(self._pumps)

    @property
    def output_count(self) -> int:
        """Number of outputs currently receiving broadcasts."""
        return len(self._outputs)

    def in_(self, producer: AsyncIterable[Any]) -> InputHandle:
        """
        Register an async iterable as an input and start pumping it.

        Must be called while the event loop is running. Returns a handle;
        calling it cancels the input at its next item.
        Raises MuxStoppedError after stop() and TypeError for a non-async-iterable.
        """
        if self._stopped:
            raise MuxStoppedError(f"mux {self._name!r} is stopped; cannot add input")
        if not hasattr(producer, "__aiter__"):
            raise TypeError(
                f"input must be an async iterable, got {type(producer).__name__}"
            )
        input_id = f"in_{uuid.uuid4().hex[:8]}"
        pump = InputPump(self, producer, input_id)
        self._pumps[input_id] = pump
        try:
            pump.start()
        except RuntimeError:
            del self._pumps[input_id]
            raise
        self._metrics.record_input_registered(len(self._pumps))
        self._logger.info("input_registered", extra={"input_id": input_id})
        return InputHandle(pump)

    def out(self) -> MuxOutput:
        """
        Register a new output. It only sees items broadcast after this call.
        Raises MuxStoppedError after stop().
        """
        if self._stopped:
            raise MuxStoppedError(f"mux {self._name!r} is stopped; cannot add output")
        channel = OutputChannel(f"out_{uuid.uuid4().hex[:8]}")
        self._outputs.add(channel)
        self._metrics.record_output_registered(len(self._outputs))
        self._logger.info("output_registered", extra={"output_id": channel.channel_id})
        return MuxOutput(self, channel)

    def push(self, item: Any) -> None:
        """Broadcast item to every registered output. Silently ignored once stopped."""
        if self._stopped:
            self._metrics.record_dropped()
            return
        outputs = list(self._outputs)
        for channel in outputs:
            channel.enqueue(item)
        self._metrics.record_broadcast(len(outputs))
        self._logger.debug("broadcast", extra={"output_count": len(outputs)})

    def stop(self) -> None:
        """
        Stop the mux (idempotent). Closes and wakes every output, then empties
        the registry. Inputs notice on their next item; use shutdown() to
        cancel them outright.
        """
        if self._stopped:
            return
        self._stopped = True
        outputs = list(self._outputs)
        self._outputs.clear()
        closed = sum(1 for channel in outputs if channel.close())
        self._metrics.record_outputs_closed(closed, 0)
        self._logger.info(
            "mux_stopped",
            extra={"outputs_closed": closed, "inputs_live": len(self._pumps)},
        )

    async def join(self) -> None:
        """Wait for every live input to finish."""
        tasks = self._live_tasks()
        if tasks:
            await asyncio.wait(tasks)

    async def shutdown(self) -> None:
        """Stop the mux, cancel every live input task and wait for them."""
        self.stop()
        tasks = self._live_tasks()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)

    def list_inputs(self) -> List[Dict[str, str]]:
        """Return [{input_id, state}] for inputs still being pumped."""
        return [
            {"input_id": input_id, "state": pump.state.value}
            for input_id, pump in self._pumps.items()
        ]

    def _live_tasks(self) -> Set[asyncio.Task]:
        return {
            pump.task
            for pump in self._pumps.values()
            if pump.task is not None and not pump.task.done()
        }

    def _close_output(self, channel: OutputChannel) -> None:
        """Per-output stop and stream release; safe to call repeatedly."""
        closed = channel.close()
        self._outputs.discard(channel)
        self._metrics.record_outputs_closed(int(closed), len(self._outputs))
        if closed:
            self._logger.info("output_closed", extra={"output_id": channel.channel_id})

    def _input_finished(self, pump: InputPump) -> None:
        self._pumps.pop(pump.input_id, None)
        self._metrics.record_input_finished(pump.state.value, len(self._pumps))
        if self._settings.close_on_drain and not self._pumps:
            self.stop()

    def __repr__(self) -> str:
        return (
            f"Multiplexer(name={self._name!r}, inputs={len(self._pumps)}, "
            f"outputs={len(self._outputs)}, stopped={self._stopped})"
        )
