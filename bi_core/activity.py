from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityEntry:
    timestamp: str
    message: str


class ActivityLog:
    """Append-only diagnostic trail shown in the admin console."""

    def __init__(self) -> None:
        self._entries: List[ActivityEntry] = []
        self._lock = threading.Lock()

    def log(self, message: str) -> ActivityEntry:
        entry = ActivityEntry(timestamp=datetime.now(timezone.utc).isoformat(), message=message.upper())
        with self._lock:
            self._entries.append(entry)
        logger.info("activity: %s", message)
        return entry

    def entries(self) -> List[ActivityEntry]:
        with self._lock:
            return list(self._entries)

    def to_records(self) -> List[Dict[str, str]]:
        return [{"timestamp": e.timestamp, "message": e.message} for e in self.entries()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
