"""Package logging.

The package logger carries only a NullHandler; handlers belong to the host
process. ``PX_SNAPSHOTTER_LOG_LEVEL`` sets the level at import time and
``configure_logging`` adds a stderr handler for entry points that want one.
"""

from __future__ import annotations

import logging
import os

LIBRARY_LOGGER_NAME = "px_volume_snapshotter"

logging.getLogger(LIBRARY_LOGGER_NAME).addHandler(logging.NullHandler())

_env_level = os.getenv("PX_SNAPSHOTTER_LOG_LEVEL", "").strip().upper()
_env_level_value = logging.getLevelNamesMapping().get(_env_level)
if _env_level_value:
    logging.getLogger(LIBRARY_LOGGER_NAME).setLevel(_env_level_value)

_FMT = "%(levelname)s [%(asctime)s] %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


class _StderrHandler(logging.StreamHandler):
    def __init__(self) -> None:
        super().__init__()
        self.setFormatter(logging.Formatter(fmt=_FMT, datefmt=_DATEFMT))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def configure_logging(*, level: int | str | None = None, quiet: bool = False) -> logging.Logger:
    """Attach a stderr handler to the package logger (idempotent) and set its level.

    ``quiet`` wins over ``level`` and limits output to errors.
    """
    lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)
    if not any(isinstance(handler, _StderrHandler) for handler in lib_logger.handlers):
        lib_logger.addHandler(_StderrHandler())

    if quiet:
        lib_logger.setLevel(logging.ERROR)
    elif level is not None:
        lib_logger.setLevel(level)
    return lib_logger
