"""Bounded in-memory history of resource trend points."""

import threading
from collections import deque
from datetime import datetime
from typing import Deque, List, Optional

import structlog

from .models import TrendPoint

logger = structlog.get_logger(__name__)

DEFAULT_CAPACITY = 10080  # 7 days at 1-minute resolution


class TrendStore:
    """Fixed-capacity ring of TrendPoints, oldest evicted first.

    Safe to share between the collection loop and readers on other threads.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._points: Deque[TrendPoint] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._evicted = 0

    def append(self, point: TrendPoint) -> None:
        with self._lock:
            if len(self._points) == self.capacity:
                self._evicted += 1
            self._points.append(point)

    def query(self, since: Optional[datetime] = None) -> List[TrendPoint]:
        """Points with ``timestamp >= since``, oldest first."""
        with self._lock:
            points = list(self._points)
        if since is None:
            return points
        return [p for p in points if p.timestamp >= since]

    def latest(self) -> Optional[TrendPoint]:
        with self._lock:
            return self._points[-1] if self._points else None

    @property
    def evicted(self) -> int:
        """Number of points dropped to stay within capacity."""
        with self._lock:
            return self._evicted

    def clear(self) -> None:
        with self._lock:
            self._points.clear()
            logger.info("Trend history cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._points)
