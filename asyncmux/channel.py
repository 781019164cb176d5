"""OutputChannel: one consumer's unbounded FIFO buffer with a single-slot wakeup."""

import asyncio
from collections import deque
from typing import Any, Deque, Optional

from asyncmux.errors import ChannelClosed


class OutputChannel:
    """
    Buffered channel feeding one consumer.

    enqueue() never blocks and never drops; dequeue() hands out buffered items
    first and only suspends when the buffer is empty. At most one dequeue may
    be suspended at a time (single consumer).
    """

    def __init__(self, channel_id: str) -> None:
        self._channel_id = channel_id
        self._buffer: Deque[Any] = deque()
        self._waiter: Optional[asyncio.Future] = None
        self._closed = False

    @property
    def channel_id(self) -> str:
        return self._channel_id

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Number of buffered items not yet dequeued."""
        return len(self._buffer)

    @property
    def waiting(self) -> bool:
        return self._waiter is not None

    def enqueue(self, item: Any) -> None:
        """Append item and wake the suspended dequeue, if any. No-op once closed."""
        if self._closed:
            return
        self._buffer.append(item)
        self._wake()

    def close(self) -> bool:
        """Mark closed and wake the suspended dequeue. Returns True only on the call that closed it."""
        if self._closed:
            return False
        self._closed = True
        self._wake()
        return True

    def _wake(self) -> None:
        waiter = self._waiter
        if waiter is None:
            return
        self._waiter = None
        if not waiter.done():
            waiter.set_result(None)

    async def dequeue(self) -> Any:
        """Return the next item, suspending while the buffer is empty. Raises ChannelClosed when closed and drained."""
        while True:
            if self._buffer:
                return self._buffer.popleft()
            if self._closed:
                raise ChannelClosed(self._channel_id)
            if self._waiter is not None:
                raise RuntimeError(
                    f"channel {self._channel_id!r} already has a pending dequeue"
                )
            waiter = asyncio.get_running_loop().create_future()
            self._waiter = waiter
            try:
                await waiter
            finally:
                # Cancelled consumer: free the slot so a later dequeue can wait.
                if self._waiter is waiter:
                    self._waiter = None

    def __aiter__(self) -> "OutputChannel":
        return self

    async def __anext__(self) -> Any:
        try:
            return await self.dequeue()
        except ChannelClosed:
            raise StopAsyncIteration from None

    def __repr__(self) -> str:
        return (
            f"OutputChannel(id={self._channel_id!r}, pending={len(self._buffer)}, "
            f"closed={self._closed})"
        )
