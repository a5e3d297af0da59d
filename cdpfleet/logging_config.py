"""
Logging for cdpfleet.

Log records go to stderr so that `cdpfleet run --json` keeps stdout for the
report. Environment overrides:

    CDPFLEET_LOG_LEVEL   root level name (default INFO)
    CDPFLEET_LOG_JSON    "1" for one JSON object per line
    CDPFLEET_LOG_FILE    extra file handler

Agent-scoped records carry fields through StructuredLogger, e.g.
``logger.warning_with("Agent failed", agent="B", error_type="TimeoutError")``.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict

# third-party loggers that are noisy at INFO during a fleet run
QUIET_LOGGERS = ("asyncio", "playwright", "aiohttp")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class StructuredLogger(logging.Logger):
    def _log_with_fields(self, level: int, msg: str, fields: Dict[str, Any] = None, **kwargs):
        if not self.isEnabledFor(level):
            return
        extra = kwargs.get("extra", {})
        extra["extra_fields"] = fields or {}
        kwargs["extra"] = extra
        super()._log(level, msg, (), **kwargs)

    def info_with(self, msg: str, **fields):
        self._log_with_fields(logging.INFO, msg, fields)

    def error_with(self, msg: str, **fields):
        self._log_with_fields(logging.ERROR, msg, fields)

    def warning_with(self, msg: str, **fields):
        self._log_with_fields(logging.WARNING, msg, fields)

    def debug_with(self, msg: str, **fields):
        self._log_with_fields(logging.DEBUG, msg, fields)


logging.setLoggerClass(StructuredLogger)


def setup_logging(
    level: str = None,
    json_format: bool = None,
    log_file: str = None
):
    level = level or os.environ.get("CDPFLEET_LOG_LEVEL", "INFO")
    json_format = json_format if json_format is not None else os.environ.get("CDPFLEET_LOG_JSON", "0") == "1"
    log_file = log_file or os.environ.get("CDPFLEET_LOG_FILE")

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    root_logger.handlers.clear()

    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "[%(asctime)s] %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    # stderr keeps the report on stdout machine-readable with --json
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter() if json_format else formatter)
        root_logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> StructuredLogger:
    return logging.getLogger(name)
