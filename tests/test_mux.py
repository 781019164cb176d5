"""Multiplexer: broadcast, registration, stop and cleanup behaviour."""

import asyncio

import pytest

from asyncmux import Multiplexer, MuxSettings, MuxStoppedError, PumpState

from conftest import agen, collect, settle


class TestBroadcast:

    @pytest.mark.asyncio
    async def test_one_input_two_outputs(self, mux):
        handle = mux.in_(agen([1, 2, 3]))
        first, second = mux.out(), mux.out()

        assert await handle.wait() is PumpState.COMPLETED
        mux.stop()

        assert await collect(first) == [1, 2, 3]
        assert await collect(second) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_interleaved_inputs_keep_broadcast_order(self, mux):
        output = mux.out()
        mux.in_(agen([1, 3], step=True))
        mux.in_(agen([2, 4], step=True))

        await mux.join()
        mux.stop()

        assert await collect(output) == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_every_output_sees_every_item_in_input_order(self, mux):
        outputs = [mux.out() for _ in range(3)]
        for base in (10, 20, 30):
            mux.in_(agen([base + 1, base + 2, base + 3], step=True))

        await mux.join()
        mux.stop()

        results = [await collect(output) for output in outputs]
        assert results[0] == results[1] == results[2]
        assert sorted(results[0]) == [11, 12, 13, 21, 22, 23, 31, 32, 33]
        for base in (10, 20, 30):
            own = [item for item in results[0] if base < item < base + 10]
            assert own == [base + 1, base + 2, base + 3]

    @pytest.mark.asyncio
    async def test_push_without_inputs(self, mux):
        output = mux.out()
        mux.push(42)
        mux.stop()
        assert await collect(output) == [42]

    @pytest.mark.asyncio
    async def test_late_output_gets_no_backfill(self, mux):
        early = mux.out()
        mux.push("a")
        mux.push("b")
        late = mux.out()
        mux.push("c")
        mux.stop()

        assert await collect(early) == ["a", "b", "c"]
        assert await collect(late) == ["c"]

    @pytest.mark.asyncio
    async def test_consumer_waiting_receives_pushed_item(self, mux):
        output = mux.out()
        received = []

        async def consume():
            async for item in output:
                received.append(item)

        task = asyncio.create_task(consume())
        await settle()
        mux.push("x")
        await settle()
        assert received == ["x"]

        mux.stop()
        await asyncio.wait_for(task, timeout=1)
        assert received == ["x"]

    @pytest.mark.asyncio
    async def test_undrained_output_does_not_hold_back_inputs(self, mux):
        idle = mux.out()
        busy = mux.out()
        handle = mux.in_(agen(range(1000)))

        assert await asyncio.wait_for(handle.wait(), timeout=5) is PumpState.COMPLETED
        assert idle.pending == 1000
        mux.stop()
        assert await collect(busy) == list(range(1000))


class TestStop:

    @pytest.mark.asyncio
    async def test_stop_with_no_inputs_ends_output(self, mux):
        output = mux.out()
        mux.stop()
        assert await collect(output) == []
        assert mux.output_count == 0

    @pytest.mark.asyncio
    async def test_stop_wakes_suspended_consumer(self, mux):
        output = mux.out()
        task = asyncio.create_task(collect(output))
        await settle()
        assert not task.done()

        mux.stop()
        assert await asyncio.wait_for(task, timeout=1) == []

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, mux):
        outputs = [mux.out(), mux.out()]
        mux.stop()
        mux.stop()
        mux.stop()

        assert mux.stopped
        assert [await collect(o) for o in outputs] == [[], []]
        assert mux.metrics.get_counter("outputs_closed") == 2

    @pytest.mark.asyncio
    async def test_register_after_stop_raises(self, mux):
        mux.stop()
        with pytest.raises(MuxStoppedError):
            mux.out()
        producer = agen([1])
        with pytest.raises(MuxStoppedError):
            mux.in_(producer)
        assert mux.input_count == 0
        assert mux.output_count == 0

    @pytest.mark.asyncio
    async def test_push_after_stop_is_ignored(self, mux):
        mux.stop()
        mux.push(1)
        assert mux.metrics.get_counter("items_broadcast") == 0
        assert mux.metrics.get_counter("items_dropped") == 1

    @pytest.mark.asyncio
    async def test_inputs_stop_forwarding_after_stop(self, mux):
        gate = asyncio.Event()
        closed = []

        async def producer():
            try:
                yield 1
                await gate.wait()
                yield 2
                yield 3
            finally:
                closed.append(True)

        output = mux.out()
        handle = mux.in_(producer())
        await settle()
        mux.stop()
        gate.set()

        assert await handle.wait() is PumpState.CANCELLED
        assert closed == [True]
        assert await collect(output) == [1]

    @pytest.mark.asyncio
    async def test_shutdown_cancels_blocked_inputs(self, mux):
        never = asyncio.Event()

        async def blocked():
            await never.wait()
            yield "unreachable"

        handle = mux.in_(blocked())
        await settle()
        assert mux.input_count == 1

        await asyncio.wait_for(mux.shutdown(), timeout=1)
        assert handle.done
        assert handle.state is PumpState.CANCELLED
        assert mux.input_count == 0
        assert mux.stopped


class TestOutputLifecycle:

    @pytest.mark.asyncio
    async def test_output_stop_only_affects_that_output(self, mux):
        kept = mux.out()
        dropped = mux.out()
        mux.push(1)
        dropped.stop()
        dropped.stop()
        mux.push(2)

        assert mux.output_count == 1
        assert await collect(dropped) == [1]
        mux.stop()
        assert await collect(kept) == [1, 2]

    @pytest.mark.asyncio
    async def test_output_stop_wakes_its_consumer(self, mux):
        output = mux.out()
        task = asyncio.create_task(collect(output))
        await settle()
        output.stop()
        assert await asyncio.wait_for(task, timeout=1) == []
        assert not mux.stopped

    @pytest.mark.asyncio
    async def test_consumer_error_still_releases_output(self, mux):
        output = mux.out()
        mux.push(1)

        with pytest.raises(ValueError):
            async with output:
                async for _item in output:
                    raise ValueError("downstream failure")

        assert output.closed
        assert mux.output_count == 0
        mux.push(2)
        assert output.pending == 0

    @pytest.mark.asyncio
    async def test_early_close_releases_output(self, mux):
        output = mux.out()
        mux.push("a")
        mux.push("b")

        stream = aiter(output)
        assert await anext(stream) == "a"
        await stream.aclose()

        assert mux.output_count == 0
        assert mux.metrics.get_counter("outputs_closed") == 1

    @pytest.mark.asyncio
    async def test_break_releases_output(self, mux):
        output = mux.out()
        mux.push(1)
        mux.push(2)

        async for _item in output:
            break

        assert mux.output_count == 0
        assert output.closed
        mux.push(3)
        assert output.pending == 1

    @pytest.mark.asyncio
    async def test_raising_consumer_releases_output(self, mux):
        output = mux.out()
        mux.push(1)

        async def consume():
            async for _item in output:
                raise ValueError("downstream failure")

        with pytest.raises(ValueError):
            await consume()

        assert mux.output_count == 0
        mux.push(2)
        assert output.pending == 0
        assert mux.metrics.get_counter("outputs_closed") == 1

    @pytest.mark.asyncio
    async def test_cancelled_consumer_releases_output(self, mux):
        output = mux.out()
        task = asyncio.create_task(collect(output))
        await settle()
        assert mux.output_count == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert mux.output_count == 0
        assert not mux.stopped

    @pytest.mark.asyncio
    async def test_dropping_stream_releases_output(self, mux):
        output = mux.out()
        mux.push("a")
        stream = aiter(output)
        assert await anext(stream) == "a"

        mux.push("b")
        assert await anext(stream) == "b"
        assert mux.output_count == 1
        del stream
        assert mux.output_count == 0

    @pytest.mark.asyncio
    async def test_release_paths_overlap_without_error(self, mux):
        output = mux.out()
        output.stop()
        await output.aclose()
        mux.stop()
        assert mux.output_count == 0
        assert mux.metrics.get_counter("outputs_closed") == 1


class TestInputs:

    @pytest.mark.asyncio
    async def test_producer_failure_is_contained(self, mux):
        async def failing():
            yield 1
            yield 2
            raise RuntimeError("producer broke")

        output = mux.out()
        bad = mux.in_(failing())
        good = mux.in_(agen(["a", "b"], step=True))

        assert await bad.wait() is PumpState.FAILED
        assert await good.wait() is PumpState.COMPLETED
        assert not mux.stopped

        late = mux.out()
        mux.in_(agen([99]))
        await mux.join()
        mux.stop()

        items = await collect(output)
        assert [i for i in items if isinstance(i, int) and i < 99] == [1, 2]
        assert [i for i in items if isinstance(i, str)] == ["a", "b"]
        assert items[-1] == 99
        assert await collect(late) == [99]
        assert mux.metrics.get_counter("inputs_failed") == 1

    @pytest.mark.asyncio
    async def test_cancel_takes_effect_at_next_item(self, mux):
        queue: asyncio.Queue = asyncio.Queue()
        closed = []

        async def producer():
            try:
                while True:
                    yield await queue.get()
            finally:
                closed.append(True)

        output = mux.out()
        handle = mux.in_(producer())
        queue.put_nowait(1)
        await settle()
        assert output.pending == 1

        handle()
        handle.cancel()
        queue.put_nowait(2)

        assert await handle.wait() is PumpState.CANCELLED
        assert closed == [True]
        mux.stop()
        assert await collect(output) == [1]
        assert mux.metrics.get_counter("inputs_cancelled") == 1

    @pytest.mark.asyncio
    async def test_input_count_tracks_live_pumps(self, mux):
        gate = asyncio.Event()

        async def gated():
            await gate.wait()
            yield 1

        mux.in_(gated())
        mux.in_(gated())
        assert mux.input_count == 2
        assert len(mux.list_inputs()) == 2

        gate.set()
        await mux.join()
        assert mux.input_count == 0
        assert mux.metrics.get_gauge("inputs_live") == 0

    @pytest.mark.asyncio
    async def test_non_async_iterable_is_rejected(self, mux):
        with pytest.raises(TypeError):
            mux.in_([1, 2, 3])
        assert mux.input_count == 0

    @pytest.mark.asyncio
    async def test_inputs_finishing_do_not_stop_mux_by_default(self, mux):
        mux.in_(agen([1]))
        await mux.join()
        assert not mux.stopped
        assert mux.out() is not None

    @pytest.mark.asyncio
    async def test_close_on_drain_stops_after_last_input(self):
        mux = Multiplexer("drain", MuxSettings(close_on_drain=True))
        output = mux.out()
        mux.in_(agen([1, 2], step=True))
        mux.in_(agen([3], step=True))

        assert sorted(await asyncio.wait_for(collect(output), timeout=1)) == [1, 2, 3]
        assert mux.stopped

    def test_in_requires_running_loop(self, mux):
        producer = agen([1])
        with pytest.raises(RuntimeError):
            mux.in_(producer)
        assert mux.input_count == 0
