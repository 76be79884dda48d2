from __future__ import annotations

import logging

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

LOG_FORMAT = "[{asctime}|{filename}:{funcName}:{lineno:d}]{levelname}  {message}"


def setup_logging(level: str = "info") -> logging.Logger:
    """Configure the root logger once with a console handler."""
    logger = logging.getLogger()
    logger.setLevel(_LEVELS.get(level.lower(), logging.INFO))

    formatter = logging.Formatter(LOG_FORMAT, style="{", datefmt="%H:%M:%S")
    for handler in logger.handlers:
        if getattr(handler, "_siteguard", False):
            handler.setFormatter(formatter)
            return logger

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler._siteguard = True  # type: ignore[attr-defined]
    logger.addHandler(console_handler)
    return logger
