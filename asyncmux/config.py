"""Runtime settings for the mux, read from the environment (ASYNCMUX_*)."""

import logging
import os
from dataclasses import dataclass

DEFAULT_LOG_LEVEL = "INFO"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    return default


def _env_log_level(name: str, default: str) -> str:
    raw = (os.environ.get(name) or "").strip().upper()
    if raw and isinstance(logging.getLevelName(raw), int):
        return raw
    return default


@dataclass
class MuxSettings:
    """
    Settings for a Multiplexer.

    log_level: level for the mux loggers (ASYNCMUX_LOG_LEVEL).
    close_on_drain: stop the mux once the last live input finishes
        (ASYNCMUX_CLOSE_ON_DRAIN). Off by default; the owner stops the mux.
    """

    log_level: str = DEFAULT_LOG_LEVEL
    close_on_drain: bool = False

    @classmethod
    def from_env(cls) -> "MuxSettings":
        return cls(
            log_level=_env_log_level("ASYNCMUX_LOG_LEVEL", DEFAULT_LOG_LEVEL),
            close_on_drain=_env_bool("ASYNCMUX_CLOSE_ON_DRAIN", False),
        )
