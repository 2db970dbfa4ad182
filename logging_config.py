"""Structured logger setup shared by the app, engine and CLI commands."""

import logging

from pythonjsonlogger.json import JsonFormatter

ROOT_LOGGER = "lottery"


def _root_logger() -> logging.Logger:
    """
    Configure the JSON handler once on the ``lottery`` logger.

    Module loggers are its children and propagate to it, so one handler and
    one level govern the whole application.
    """
    root = logging.getLogger(ROOT_LOGGER)
    if root.handlers:
        return root

    handler = logging.StreamHandler()
    formatter = JsonFormatter(
        "%(levelname)s %(name)s %(message)s %(asctime)s"
    )
    handler.setFormatter(formatter)
    root.addHandler(handler)
    root.setLevel(logging.INFO)
    root.propagate = False
    return root


def set_level(level: str) -> None:
    _root_logger().setLevel(getattr(logging, str(level).upper(), logging.INFO))


def get_logger(name: str) -> logging.Logger:
    _root_logger()
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
