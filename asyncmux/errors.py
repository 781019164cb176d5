"""Exceptions raised by the multiplexer."""


class MuxError(Exception):
    """Base class for multiplexer errors."""


class MuxStoppedError(MuxError, RuntimeError):
    """Raised when registering an input or output on a stopped mux."""


class ChannelClosed(MuxError):
    """Raised by OutputChannel.dequeue() once the channel is closed and drained."""
