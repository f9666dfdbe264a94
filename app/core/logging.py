from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.config import get_settings
from app.core.context import get_action_id, get_run_id

# libraries that log every remote call at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

_HANDLER_MARK = "_action_engine_handler"


def utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RunContextFilter(logging.Filter):
    """
    Stamps the bound run/action ids onto every record ("-" when unbound).
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = get_run_id() or "-"
        record.action_id = get_action_id() or "-"
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": utc_iso(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "run_id": getattr(record, "run_id", "-"),
            "action_id": getattr(record, "action_id", "-"),
        }
        fields = getattr(record, "fields", None)
        if isinstance(fields, dict):
            payload.update(fields)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        run_id = getattr(record, "run_id", "-")
        action_id = getattr(record, "action_id", "-")
        line = f"{utc_iso()} {record.levelname:<7} [{action_id}/{run_id}] {record.name}: {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def build_handler(json_logs: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RunContextFilter())
    handler.setFormatter(JsonFormatter() if json_logs else TextFormatter())
    setattr(handler, _HANDLER_MARK, True)
    return handler


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> logging.Handler:
    """
    Install the engine's stdout handler on the root logger.

    Safe to call repeatedly: a previously installed engine handler is
    replaced, handlers owned by others are left alone.
    """
    settings = get_settings()
    level = level or settings.log_level
    json_logs = settings.log_json if json_logs is None else json_logs

    root = logging.getLogger()
    for h in list(root.handlers):
        if getattr(h, _HANDLER_MARK, False):
            root.removeHandler(h)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = build_handler(json_logs)
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler
