"""
Structured logging for the quote engine.

Every engine logs under ``quote-engine.<component>``; the JSON line carries
the component name on its own so pricing, redistribution and rehydration
events can be filtered without parsing logger names. Context passed through
``extra=`` (quote id, line item, category, reconciliation delta, timings) is
copied in only when set.
"""
import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional

ENGINE_LOGGER = "quote-engine"

_CONTEXT_FIELDS = (
    "quote_id",
    "item_id",
    "category",
    "delta",
    "duration_ms",
    "request_id",
    "http_method",
    "http_path",
    "http_status",
)


def _component(logger_name: str) -> Optional[str]:
    prefix = ENGINE_LOGGER + "."
    if logger_name.startswith(prefix):
        return logger_name[len(prefix):]
    return None


class JSONFormatter(logging.Formatter):
    """One JSON object per record, stamped with the record's own creation time."""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
        }
        component = _component(record.name)
        if component:
            log_entry["component"] = component
        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", json_output: bool = True, engine_level: Optional[str] = None):
    """
    Configure the root handler once per process.

    ``engine_level`` sets the pricing engines apart from the web stack, e.g.
    DEBUG to see per-item clamps and timings while uvicorn stays at INFO.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
        ))
    root.handlers = [handler]

    engine = logging.getLogger(ENGINE_LOGGER)
    engine.setLevel(getattr(logging, engine_level.upper(), logging.NOTSET) if engine_level else logging.NOTSET)

    # Per-request access lines duplicate the timing middleware's
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    return handler
