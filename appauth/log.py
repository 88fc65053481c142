"""Logging setup for appauth.

Library code logs through ``logging.getLogger("appauth.<area>")`` and
never configures handlers itself; :func:`get_logger` installs the single
stderr handler on the ``appauth`` root the first time it is called.
Provider payloads go through :func:`redact_sensitive_data` before they
reach a log record.
"""

from __future__ import annotations

import logging
import sys

from typing import Any


ROOT_LOGGER_NAME = "appauth"

_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"

# Substrings of dict keys whose values are masked
_SENSITIVE_KEYS = (
    "token",
    "secret",
    "password",
    "code",
    "verifier",
    "challenge",
    "credential",
    "authorization",
)

_REDACTED = "[REDACTED]"
_TOO_DEEP = "[MAX_DEPTH]"


class _LoggerHolder:
    """Holder for the configured root logger."""

    instance: logging.Logger | None = None


def get_logger() -> logging.Logger:
    """Return the ``appauth`` root logger, configuring it once.

    Returns
    -------
    logging.Logger
        Logger at WARNING with one stderr handler.
    """
    logger = _LoggerHolder.instance
    if logger is not None:
        return logger

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.WARNING)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(handler)
    _LoggerHolder.instance = logger
    return logger


def set_level(level: int | str) -> None:
    """Change the level of every appauth logger.

    Parameters
    ----------
    level : int or str
        A ``logging`` constant or a level name such as ``"info"``.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    get_logger().setLevel(level)


def enable_debug() -> None:
    """Log each login stage, store operation and provider call."""
    set_level(logging.DEBUG)


def _is_sensitive(key: Any) -> bool:
    name = str(key).lower()
    return any(marker in name for marker in _SENSITIVE_KEYS)


def redact_sensitive_data(data: Any, max_depth: int = 5) -> Any:
    """Return a copy of ``data`` that is safe to log.

    Values under keys naming tokens, secrets, codes or PKCE material are
    replaced by ``"[REDACTED]"``; nesting beyond ``max_depth`` levels is
    replaced by ``"[MAX_DEPTH]"``. Scalars are returned unchanged.
    """
    if max_depth <= 0:
        return _TOO_DEEP
    if isinstance(data, dict):
        return {
            key: _REDACTED if _is_sensitive(key) else redact_sensitive_data(value, max_depth - 1)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact_sensitive_data(item, max_depth - 1) for item in data]
    return data
