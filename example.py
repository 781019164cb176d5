"""Example: two producers fanned out to two consumers through one mux (in-memory)."""

import asyncio
import logging

from asyncmux import Multiplexer

logging.basicConfig(level=logging.INFO)


async def numbers(start: int, count: int, delay: float):
    for n in range(start, start + count):
        await asyncio.sleep(delay)
        yield n


async def consume(label: str, output) -> None:
    async with output:
        async for item in output:
            print(f"{label} <- {item}")


async def main() -> None:
    mux = Multiplexer("example")

    mux.in_(numbers(0, 5, 0.01))
    mux.in_(numbers(100, 5, 0.015))
    consumers = [
        asyncio.create_task(consume("consumer-1", mux.out())),
        asyncio.create_task(consume("consumer-2", mux.out())),
    ]

    await mux.join()
    mux.push("bye")
    mux.stop()
    await asyncio.gather(*consumers)


if __name__ == "__main__":
    asyncio.run(main())
