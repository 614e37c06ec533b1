"""Logging setup for the command line."""

from __future__ import annotations

import logging

from pythonjsonlogger.json import JsonFormatter
from rich.console import Console
from rich.logging import RichHandler

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

JSON_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def setup_logging(level: str = "info", fmt: str = "text") -> logging.Logger:
    """Attach a single handler to the `codefig` logger. Safe to call repeatedly.

    `text` renders through rich on stderr; `json` writes one object per record
    for CI logs and log shippers.
    """
    logger = logging.getLogger("codefig")
    logger.setLevel(_LEVELS.get(level, logging.INFO))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    if fmt == "json":
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter(JSON_FORMAT))
    else:
        handler = RichHandler(
            console=Console(stderr=True),
            show_time=False,
            show_path=False,
            markup=False,
        )
    logger.addHandler(handler)
    logger.propagate = False
    return logger
