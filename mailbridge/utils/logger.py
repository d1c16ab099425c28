"""
Structured JSON Logger

Production logging with JSON output for cloud log aggregators.
Every function request logs through here; tokens and authorization codes
are never passed in messages or extra fields.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict


class JSONFormatter(logging.Formatter):
    """
    Formatter that renders each record as a single JSON object.

    Fields: timestamp, level, message, logger, module, function, line,
    plus the exception text and any ``extra_fields`` dict on the record.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name,
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


TEXT_FORMAT = '[%(levelname)s] [%(name)s] %(message)s'


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    """
    Configure the root logger once for the whole service.

    Args:
        level: Logging level name (e.g. "INFO", "DEBUG")
        fmt: "json" for JSONFormatter, anything else for plain text
    """
    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

