"""Logging helpers shared by the API, the core and the Celery workers."""

from __future__ import annotations

import logging
import sys

ROOT_LOGGER = "aegis"

_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Return a logger namespaced under ``aegis.``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logging(level: str | None = None) -> None:
    """Configure the ``aegis`` logger once; later calls only adjust the level."""
    from aegis.config import settings

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel((level or settings.LOG_LEVEL).upper())

    if not any(getattr(h, "_aegis", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler._aegis = True  # type: ignore[attr-defined]
        root.addHandler(handler)
