"""Logging configuration shared by the server and the softphone client."""
import logging
import sys
from typing import Optional

from softphone.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Chatty transport loggers; our own bracketed tags already cover their events
QUIET_LOGGERS = ("twilio.http_client", "httpx", "websockets", "uvicorn.access")


def setup_logging(level: Optional[str] = None) -> None:
    """Send log records to stdout at ``level`` (defaults to ``LOG_LEVEL``)."""
    level_name = (level or settings.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
