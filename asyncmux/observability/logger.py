"""Event logging for the mux: one line per event, with its extra fields appended."""

import logging
import sys
from typing import Union

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"

# Attributes every LogRecord carries; anything else came in through extra=
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class EventFormatter(logging.Formatter):
    """
    Formats ``logger.info("output_closed", extra={"output_id": ...})`` as
    ``... | output_closed | output_id='out_1f2e'``. Tracebacks still follow the line.
    """

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        fields = [
            f"{key}={value!r}"
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        ]
        if fields:
            line = f"{line} | {' '.join(fields)}"
        return line


def get_logger(name: str, level: Union[int, str] = logging.INFO) -> logging.Logger:
    """Return a configured logger for observability. Level only applies the first time a name is configured."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(EventFormatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(level)
    return logger
