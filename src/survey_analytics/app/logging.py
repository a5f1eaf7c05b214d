from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional, TextIO


# Campaign the current calculation belongs to; stamped onto every record.
_CAMPAIGN_ID: ContextVar[Optional[str]] = ContextVar("campaign_id", default=None)

# LogRecord attributes that are never treated as extras.
_RECORD_FIELDS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "campaign_id"}

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s campaign=%(campaign_id)s %(message)s"


def current_campaign_id() -> Optional[str]:
    return _CAMPAIGN_ID.get()


@contextmanager
def campaign_context(campaign_id: Optional[str]) -> Iterator[None]:
    """Tag every record logged inside the block with campaign_id. Nests cleanly."""
    token = _CAMPAIGN_ID.set(campaign_id)
    try:
        yield
    finally:
        _CAMPAIGN_ID.reset(token)


class CampaignIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.campaign_id = _CAMPAIGN_ID.get()
        return True


class JsonFormatter(logging.Formatter):
    # One JSON object per line; extras passed with extra={} become top-level keys.
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "campaign_id": getattr(record, "campaign_id", None),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RECORD_FIELDS or key in payload:
                continue
            payload[key] = value

        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", json_logs: bool = True, stream: Optional[TextIO] = None) -> logging.Handler:
    """
    Replace the handlers of the package logger with a single stream handler.

    Only the `survey_analytics` logger is touched, so an embedding application
    keeps control of the root logger.
    """
    logger = logging.getLogger("survey_analytics")
    for h in list(logger.handlers):
        logger.removeHandler(h)
    logger.setLevel(level.upper())

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.addFilter(CampaignIdFilter())
    handler.setFormatter(JsonFormatter() if json_logs else logging.Formatter(fmt=_TEXT_FORMAT))
    logger.addHandler(handler)
    return handler


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
