"""
Relay logging - one format for the service, one prefix per activity.

Every line the router writes for an activity carries the activity id and
the conversation id, so a single chat thread can be followed with grep.
"""

import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Per-request client chatter drowns the relay's own lines at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "nats")


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure process logging and return the ``relay`` logger."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return logging.getLogger("relay")


class ActivityLogger:
    """Logger bound to one inbound activity: ``[activity][conversation][STAGE] msg``."""

    def __init__(
        self,
        activity_id: Optional[str],
        conversation_id: Optional[str],
        component: str = "router"
    ):
        self.activity_id = activity_id or "-"
        self.conversation_id = conversation_id or "-"
        self._logger = logging.getLogger(f"relay.{component}")

    def _prefix(self, stage: Optional[str]) -> str:
        prefix = f"[{self.activity_id}][{self.conversation_id}]"
        return f"{prefix}[{stage}]" if stage else prefix

    def info(self, msg: str, stage: Optional[str] = None):
        self._logger.info(f"{self._prefix(stage)} {msg}")

    def warning(self, msg: str, stage: Optional[str] = None):
        self._logger.warning(f"{self._prefix(stage)} {msg}")

    def debug(self, msg: str, stage: Optional[str] = None):
        self._logger.debug(f"{self._prefix(stage)} {msg}")
