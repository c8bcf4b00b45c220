"""
Owner notifications for scheduled PubMed checks.

Delivery is pluggable: the reconciler hands a summary to a NotificationSink
and logs, rather than raises, any failure.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class NotificationSink(ABC):
    """Delivers a new-publications summary to an owner."""

    @abstractmethod
    async def notify(self, contact: Optional[str], summary: Dict[str, Any]) -> None:
        pass


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the log and keeps the last few in memory."""

    def __init__(self, keep: int = 50):
        self.keep = keep
        self.sent: List[Dict[str, Any]] = []

    async def notify(self, contact: Optional[str], summary: Dict[str, Any]) -> None:
        logger.info(
            f"Notify {contact or '<no contact>'}: "
            f"{summary.get('new_count', 0)} new publications for "
            f"{summary.get('author_name', 'unknown author')}"
        )
        self.sent.append({"contact": contact, **summary})
        del self.sent[:-self.keep]
