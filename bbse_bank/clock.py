"""
Clock Sources

The bank reads the current block timestamp from an injected clock so interest
accrual can be driven deterministically in tests and demos.
"""

import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional


class Clock(ABC):
    """Monotonically non-decreasing source of whole-second timestamps"""

    @abstractmethod
    def timestamp(self) -> int:
        """Current time in seconds since the epoch"""
        pass

    def now(self) -> datetime:
        """Current time as an aware UTC datetime"""
        return datetime.fromtimestamp(self.timestamp(), tz=timezone.utc)


class SystemClock(Clock):
    """Wall clock, clamped so it never runs backwards"""

    def __init__(self):
        self._last = 0
        self._lock = threading.Lock()

    def timestamp(self) -> int:
        with self._lock:
            self._last = max(self._last, int(time.time()))
            return self._last


class ManualClock(Clock):
    """Clock that only moves when told to"""

    def __init__(self, start: Optional[int] = None):
        if start is None:
            start = int(time.time())
        if start <= 0:
            raise ValueError("Clock must start at a positive timestamp")
        self._current = start
        self._lock = threading.Lock()

    def timestamp(self) -> int:
        with self._lock:
            return self._current

    def advance(self, seconds: int) -> int:
        """Move the clock forward and return the new timestamp"""
        if seconds < 0:
            raise ValueError("Clock cannot move backwards")
        with self._lock:
            self._current += seconds
            return self._current

    def set(self, timestamp: int) -> None:
        """Jump to a timestamp at or after the current one"""
        with self._lock:
            if timestamp < self._current:
                raise ValueError("Clock cannot move backwards")
            self._current = timestamp
