"""Logging setup driven by ``logging`` config (level + json|text format)."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from core.config.schemas.observability import LoggingConfig

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

# LogRecord attributes that are not user supplied ``extra`` fields
_RESERVED = set(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}

_HANDLER_NAME = "fanchat-root"


class StructuredFormatter(logging.Formatter):
    """One JSON object per record; ``extra`` fields land under "extra"."""

    def format(self, record: logging.LogRecord) -> str:
        data = {
            "ts": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        extra = {
            k: v for k, v in record.__dict__.items() if k not in _RESERVED
        }
        if extra:
            data["extra"] = extra
        return json.dumps(data, ensure_ascii=False, default=str)


def configure_logging(cfg: LoggingConfig | None = None) -> logging.Logger:
    """Install (or replace) the fanchat handler on the ``fanchat`` logger.

    Idempotent: repeated calls swap the handler instead of stacking.
    """
    cfg = cfg or LoggingConfig()
    logger = logging.getLogger("fanchat")
    logger.setLevel(_LEVELS[cfg.level])
    for h in list(logger.handlers):
        if h.get_name() == _HANDLER_NAME:
            logger.removeHandler(h)
    handler = logging.StreamHandler()
    handler.set_name(_HANDLER_NAME)
    if cfg.format == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)s [%(name)s] %(message)s"
            )
        )
    logger.addHandler(handler)
    return logger


__all__ = ["configure_logging", "StructuredFormatter"]
