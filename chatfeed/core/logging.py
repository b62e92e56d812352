"""Centralised logging configuration for chatfeed.

Environment Variables:
- CHATFEED_LOG_LEVEL: Root level (default: INFO)
- CHATFEED_LOG_CONSOLE_LEVEL / CHATFEED_LOG_FILE_LEVEL: Per-handler overrides
- CHATFEED_LOG_DIR: When set, also write a midnight-rotated file there
- CHATFEED_LOG_FILE: File name inside CHATFEED_LOG_DIR (default: chatfeed.log)
- CHATFEED_LOG_RETENTION: Rotated files kept (default: 7)
- CHATFEED_LOG_TIME_MS: Include milliseconds in timestamps
"""
from __future__ import annotations

import logging
import logging.config
import re
from pathlib import Path
from typing import Any, Dict

from chatfeed.core.utils.env import get_env, get_env_bool, get_env_int

_PACKAGE_MARKER = "/chatfeed/"
_BASE_RECORD_FACTORY = logging.getLogRecordFactory()
_factory_installed = False
_configured = False

# Third-party loggers that only matter when they warn.
_QUIET_LOGGERS = (
    "httpx",
    "httpcore",
    "h11",
    "websockets",
    "multipart",
    "python_multipart",
)


class _SecretRedactionFilter(logging.Filter):
    """Mask signatures and session cookie values that slip into messages."""

    _PATTERNS = (
        (re.compile(r"(SAPISIDHASH\s+)\S+"), r"\1<redacted>"),
        (re.compile(r"\b((?:__Secure-\w+|SID|HSID|SSID|APISID|SAPISID)=)[^;\s]+"), r"\1<redacted>"),
    )

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = message
        for pattern, replacement in self._PATTERNS:
            redacted = pattern.sub(replacement, redacted)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class _KeepaliveFilter(logging.Filter):
    """Drop uvicorn's websocket keepalive ping/pong lines."""

    _NOISE = ("keepalive ping", "keepalive pong", "> PING", "< PONG")

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - behaviourally trivial
        message = record.getMessage()
        return not any(token in message for token in self._NOISE)


def _level(name: str, default: str) -> str:
    value = (get_env(name) or "").strip().upper()
    return value if isinstance(getattr(logging, value, None), int) and value else default


def _install_record_factory() -> None:
    """Expose ``shortpathname`` (path relative to the package) on every record."""

    global _factory_installed
    if _factory_installed:
        return

    def factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
        record = _BASE_RECORD_FACTORY(*args, **kwargs)
        pathname = record.pathname or ""
        index = pathname.rfind(_PACKAGE_MARKER)
        record.shortpathname = pathname[index + 1:] if index >= 0 else pathname
        return record

    logging.setLogRecordFactory(factory)
    _factory_installed = True


def _handlers(root_level: str) -> Dict[str, Dict[str, Any]]:
    handlers: Dict[str, Dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": _level("CHATFEED_LOG_CONSOLE_LEVEL", root_level),
            "formatter": "standard",
            "filters": ["redact"],
            "stream": "ext://sys.stdout",
        },
    }

    log_dir = get_env("CHATFEED_LOG_DIR")
    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.TimedRotatingFileHandler",
            "level": _level("CHATFEED_LOG_FILE_LEVEL", root_level),
            "formatter": "standard",
            "filters": ["redact"],
            "filename": str(directory / (get_env("CHATFEED_LOG_FILE") or "chatfeed.log")),
            "when": "midnight",
            "backupCount": get_env_int("CHATFEED_LOG_RETENTION", 7),
            "encoding": "utf-8",
        }
    return handlers


def setup_logging(force: bool = False) -> None:
    """Configure the root logger once; ``force`` re-reads the environment."""

    global _configured
    if _configured and not force:
        return

    root_level = _level("CHATFEED_LOG_LEVEL", "INFO")
    handlers = _handlers(root_level)
    names = list(handlers)

    timestamp = "%(asctime)s.%(msecs)03d" if get_env_bool("CHATFEED_LOG_TIME_MS", False) else "%(asctime)s"

    _install_record_factory()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "redact": {"()": _SecretRedactionFilter},
                "keepalive": {"()": _KeepaliveFilter},
            },
            "formatters": {
                "standard": {
                    "format": f"{timestamp} %(levelname)s [%(shortpathname)s:%(lineno)d] - %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
            },
            "handlers": handlers,
            "root": {"level": root_level, "handlers": names},
            "loggers": {
                "uvicorn": {"level": "WARNING", "handlers": names, "propagate": False},
                "uvicorn.error": {
                    "level": "WARNING",
                    "handlers": names,
                    "filters": ["keepalive"],
                    "propagate": False,
                },
                "uvicorn.access": {"level": "WARNING", "handlers": ["console"], "propagate": False},
            },
        }
    )
    logging.captureWarnings(True)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True


__all__ = ["setup_logging"]
