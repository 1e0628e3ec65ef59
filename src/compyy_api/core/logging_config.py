"""Logging configuration for the Compyy API."""

from __future__ import annotations

import logging

from compyy_api.core.settings import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def setup_logging(level: str | None = None) -> logging.Logger:
    """Configure the root logger once and return it."""
    log_level = (level or settings.log_level).upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    if not any(isinstance(h, logging.StreamHandler) for h in root_logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root_logger.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def mask_email(email: str) -> str:
    """Return an email address with most of the local part hidden.

    >>> mask_email("teacher@school.org")
    't*****r@school.org'
    """
    local, sep, domain = email.partition("@")
    if not sep:
        return "***"
    if len(local) <= 2:
        return f"{local[:1]}*@{domain}"
    return f"{local[0]}{'*' * (len(local) - 2)}{local[-1]}@{domain}"
