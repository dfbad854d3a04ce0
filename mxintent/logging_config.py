"""Root logger setup for the mxintent CLI and embedding appservices.

Component loggers live under ``mxintent.*``; requests/urllib3 get their own
level so per-request chatter can stay quiet while intents log at DEBUG.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from .config import AppServiceConfig

_DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_HTTP_LOGGERS = ("urllib3", "requests")

_LEVELS: dict[str, int] = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}


def parse_level(value: Any, default: int) -> int:
    """Accept a level name, a numeric string or an int; fall back to ``default``."""
    if value is None:
        return default
    if isinstance(value, int):
        return value
    name = str(value).strip().upper()
    if not name:
        return default
    if name in _LEVELS:
        return _LEVELS[name]
    try:
        return int(name)
    except ValueError:
        return default


def _non_blank(value: Any) -> str | None:
    if value is None or not str(value).strip():
        return None
    return str(value)


def _log_file_handler(log_file: str) -> logging.Handler:
    path = Path(os.path.expanduser(log_file))
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    # Logs can carry room and user ids.
    try:
        os.chmod(path, 0o600)
    except OSError:
        pass
    return handler


def configure_logging(
    cfg: AppServiceConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> None:
    """Install console/file handlers on the root logger from ``cfg``.

    ``override_file`` wins over ``cfg.log_file`` unless it is blank. Handlers
    from an earlier call are removed first.
    """
    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())

    log_file = _non_blank(override_file) or _non_blank(cfg.log_file)
    if log_file:
        handlers.append(_log_file_handler(log_file))

    formatter = logging.Formatter(
        fmt=str(cfg.log_format).strip() or _DEFAULT_FORMAT,
        datefmt=_non_blank(cfg.log_datefmt),
    )

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(parse_level(override_level or cfg.log_level, logging.INFO))

    http_level = parse_level(cfg.log_http_level, logging.WARNING)
    for name in _HTTP_LOGGERS:
        logging.getLogger(name).setLevel(http_level)

    logging.captureWarnings(True)
