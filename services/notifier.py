"""
User notification channel.

Toast rendering lives in the browser; this side only records what should be
shown. Components call info()/success()/error(); the API drains the queue.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List

from logging_config import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class Notification:
    kind: str
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }


class Notifier:
    """Thread-safe bounded queue of notifications (oldest dropped first)."""

    def __init__(self, max_pending: int = 50):
        self._pending: Deque[Notification] = deque(maxlen=max_pending)
        self._lock = threading.Lock()

    def notify(self, kind: str, message: str) -> Notification:
        notification = Notification(kind, message)
        with self._lock:
            self._pending.append(notification)
        logger.info(f"[NOTIFY:{kind}] {message}")
        return notification

    def info(self, message: str) -> Notification:
        return self.notify("info", message)

    def success(self, message: str) -> Notification:
        return self.notify("success", message)

    def error(self, message: str) -> Notification:
        return self.notify("error", message)

    def drain(self) -> List[Notification]:
        with self._lock:
            items = list(self._pending)
            self._pending.clear()
        return items
