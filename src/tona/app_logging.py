"""Logging configuration helpers."""

import logging

_FORMAT = "%(levelname)s: %(name)s: %(message)s"

# Status polling would otherwise log one request line per interval.
_QUIET_LOGGERS = ("httpx", "httpcore")


def configure_logging(level: str | int = logging.INFO) -> None:
    """Attach a single stream handler to the ``tona`` logger.

    Repeated calls only adjust the level.
    """
    logger = logging.getLogger("tona")
    logger.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
