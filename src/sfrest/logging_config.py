from __future__ import annotations

import logging
from typing import Optional, Union

_DEFAULT_FMT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_DEFAULT_DATEFMT = "%H:%M:%S"

# Loggers that repeat every request/response line at INFO/DEBUG.
_NOISY_LOGGERS = ("urllib3.connection", "urllib3.connectionpool")


def resolve_level(level: Union[int, str, None]) -> int:
    """Map None / "debug" / logging.DEBUG to a numeric level (default WARNING)."""
    if level is None:
        return logging.WARNING
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


def configure_logging(level: Union[int, str, None]) -> None:
    """Configure root logging once; safe to call multiple times."""
    lvl = resolve_level(level)
    root = logging.getLogger()

    if root.handlers:
        root.setLevel(lvl)
    else:
        logging.basicConfig(
            level=lvl,
            format=_DEFAULT_FMT,
            datefmt=_DEFAULT_DATEFMT,
        )

    for name in _NOISY_LOGGERS:
        noisy = logging.getLogger(name)
        if noisy.level == logging.NOTSET or noisy.level < logging.ERROR:
            noisy.setLevel(logging.ERROR if lvl > logging.DEBUG else logging.WARNING)
