"""Clock seam for condition timestamps and timeout checks."""

from abc import ABC, abstractmethod
from datetime import UTC, datetime


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time (timezone-aware, UTC)."""
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        # Condition timestamps are serialized with second precision
        return datetime.now(UTC).replace(microsecond=0)
