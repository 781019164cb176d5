"""Pytest fixtures and producer helpers for asyncmux tests."""

import asyncio
import sys
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, List

import pytest

# Make the repo root importable (asyncmux package and server module)
ROOT_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT_DIR))

from asyncmux import Multiplexer  # noqa: E402


async def agen(items: Iterable[Any], step: bool = False) -> AsyncIterator[Any]:
    """Yield items; with step=True give the loop a turn after each one."""
    for item in items:
        yield item
        if step:
            await asyncio.sleep(0)


async def collect(output) -> List[Any]:
    return [item async for item in output]


async def settle(turns: int = 10) -> None:
    """Let other tasks run for a few loop iterations."""
    for _ in range(turns):
        await asyncio.sleep(0)


@pytest.fixture
def mux() -> Multiplexer:
    return Multiplexer("test")
