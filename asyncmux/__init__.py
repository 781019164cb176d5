"""Async M:N multiplexer: broadcast every input's items to every live output (in-memory, one event loop)."""

from asyncmux.channel import OutputChannel
from asyncmux.config import MuxSettings
from asyncmux.errors import ChannelClosed, MuxError, MuxStoppedError
from asyncmux.message import Message
from asyncmux.mux import Multiplexer, MuxOutput
from asyncmux.pump import InputHandle, InputPump, PumpState

__all__ = [
    "Multiplexer",
    "MuxOutput",
    "MuxSettings",
    "OutputChannel",
    "InputPump",
    "InputHandle",
    "PumpState",
    "Message",
    "MuxError",
    "MuxStoppedError",
    "ChannelClosed",
]
