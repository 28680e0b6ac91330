"""Logging setup for the finance_tracker logger tree."""

from __future__ import annotations

import logging

_LOGGER_PREFIX = "finance_tracker"
_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """Attach a single stream handler to the package logger.

    Safe to call more than once; later calls only adjust the level.
    """
    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)
    if not any(getattr(handler, "_finance_tracker", False) for handler in root_logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler._finance_tracker = True
        root_logger.addHandler(handler)
    root_logger.propagate = False
    return root_logger


def reset_logging() -> None:
    root_logger = logging.getLogger(_LOGGER_PREFIX)
    for handler in list(root_logger.handlers):
        if getattr(handler, "_finance_tracker", False):
            root_logger.removeHandler(handler)
    root_logger.setLevel(logging.NOTSET)
    root_logger.propagate = True
