"""
Structured (JSON) logging configuration.
"""

import logging
import sys

from pythonjsonlogger.json import JsonFormatter


def configure_logging(app_name: str, log_level: str = "INFO") -> logging.Logger:
    """
    Install a JSON formatter on stdout for the `app_name` logger tree.

    Calling it again is a no-op apart from updating the level, so importing
    the server module more than once (tests, reloaders) does not duplicate
    handlers.
    """
    logger = logging.getLogger(app_name)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={
            "asctime": "timestamp", "levelname": "level", "name": "logger"
        },
        datefmt="%Y-%m-%dT%H:%M:%S",
    ))
    logger.addHandler(handler)
    logger.propagate = False

    return logger
