"""
Logging setup for Marginalia.

Plain-text or single-line JSON records on stdout (plus an optional file).
Per-run context such as the article id travels as ``extra`` fields through
:class:`RunLogger`, so concurrent runs never share mutable logging state.
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, MutableMapping, Optional

from marginalia.config import get_settings

# Attributes every LogRecord carries; anything else came in via ``extra``
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime"}

_QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite", "asyncio")


class JSONFormatter(logging.Formatter):
    """One JSON object per record; ``extra`` fields are copied to the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        )

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc, tb = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc),
                "traceback": traceback.format_exception(exc_type, exc, tb),
            }

        return json.dumps(entry, default=str)


def setup_logging(
    level: Optional[str] = None,
    format_string: Optional[str] = None,
    log_file: Optional[str] = None,
    json_format: Optional[bool] = None,
) -> None:
    """
    Configure the root logger from settings.

    Arguments override the matching ``settings.logging`` value.
    """
    config = get_settings().logging
    level = (level or config.level).upper()
    log_file = log_file or config.file
    use_json = config.json_format if json_format is None else json_format

    formatter = JSONFormatter() if use_json else logging.Formatter(format_string or config.format)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=getattr(logging, level), handlers=handlers, force=True)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Module logger, e.g. ``get_logger(__name__)``."""
    return logging.getLogger(name)


class RunLogger(logging.LoggerAdapter):
    """
    Logger bound to one research run.

    Usage:
        log = RunLogger(logger, article_id=5, mode="quick")
        log.info("Planning query")   # text: "[article 5] Planning query"

    The context is attached to every record as ``extra`` fields, which the
    JSON formatter emits as top-level keys.
    """

    def __init__(self, logger: logging.Logger, **context: Any):
        super().__init__(logger, context)

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        article_id = self.extra.get("article_id")
        if article_id is not None:
            msg = f"[article {article_id}] {msg}"
        return msg, kwargs
