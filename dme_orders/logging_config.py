"""Logging setup for the API process."""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Union

from dme_orders.config import Settings

PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


class StructuredFormatter(logging.Formatter):
    """Formatter that outputs JSON-structured log records."""

    def format(self, record: logging.LogRecord) -> str:
        log_dict: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_dict, default=str)


def configure_logging(level: Union[int, str] = logging.INFO, structured: bool = False) -> None:
    """Install a single stderr handler on the root logger. Later calls are no-ops."""
    global _configured
    if _configured:
        return

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredFormatter() if structured else logging.Formatter(PLAIN_FORMAT))
    root_logger.addHandler(handler)
    _configured = True


def configure_from_settings(settings: Settings) -> None:
    configure_logging(
        level="DEBUG" if settings.debug else settings.log_level,
        structured=settings.structured_logging,
    )
