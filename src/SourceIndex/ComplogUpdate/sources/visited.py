"""Bounded record of CI builds already inspected by a source."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

VisitKey = Tuple[int, Optional[datetime]]

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


class VisitedBuildSet:
    """Set of ``(build_id, finish_time)`` pairs with a size bound.

    When an insertion pushes the size past ``max_size``, only the
    ``max_size // 2`` most recently finished entries are kept. Entries without
    a finish time sort as the oldest.
    """

    def __init__(self, max_size: int = 1000) -> None:
        if max_size < 2:
            raise ValueError("max_size must be >= 2")
        self.max_size = max_size
        self._entries: Dict[VisitKey, None] = {}
        self._lock = threading.Lock()

    def __contains__(self, key: VisitKey) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def add(self, key: VisitKey) -> None:
        with self._lock:
            self._entries[key] = None
            if len(self._entries) > self.max_size:
                self._trim()

    def _trim(self) -> None:
        keep = self.max_size // 2
        newest = sorted(
            self._entries,
            key=lambda k: k[1] if k[1] is not None else _OLDEST,
            reverse=True,
        )[:keep]
        self._entries = dict.fromkeys(newest)


__all__ = ["VisitedBuildSet", "VisitKey"]
