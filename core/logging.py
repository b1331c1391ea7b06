"""
Logging configuration for the sync service
"""

import json
import logging
import re
import sys
from core.config import settings

# Loggers that are noisy at INFO; httpx also logs full request URLs
QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "httpx", "httpcore", "apscheduler")

BEARER_PATTERN = re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+")


class SyncLogFormatter(logging.Formatter):
    """
    Pipe-separated formatter that renders `error_context`.

    Pipeline code logs failures with ``extra={"error_context": exc.to_dict()}``;
    the context is appended to the line as compact JSON so it survives in
    plain-text log shipping. Bearer tokens are masked in the final line.
    """

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = getattr(record, "error_context", None)
        if context:
            line = f"{line} | context={json.dumps(context, default=str, sort_keys=True)}"
        return BEARER_PATTERN.sub(r"\1***", line)


def setup_logging(level: str = None):
    """Configure root logging once for API, scheduler and CLI entry points"""
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(SyncLogFormatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    root = logging.getLogger()
    root.setLevel(log_level)
    # Replace handlers so repeated calls (reload, tests) do not duplicate lines
    root.handlers = [handler]

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured at {logging.getLevelName(log_level)} level")
