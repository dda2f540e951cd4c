"""Daily budget of quota fallbacks shared by the whole process."""
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Optional
from byok.config import settings


@dataclass(frozen=True)
class FallbackUsage:
    """Snapshot of the fallback budget."""

    used: int
    limit: int
    day: date

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FallbackBudget:
    """
    Counter of fallback hops, reset at every UTC day boundary.

    Checking and recording involve no awaits, so on a single event loop
    ``can_use()`` followed by ``record()`` cannot interleave with another
    request doing the same.
    """

    def __init__(
        self,
        daily_limit: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize the budget.

        Args:
            daily_limit: Maximum fallbacks per UTC day
            clock: Returns the current time (aware or UTC)
        """
        self.daily_limit = (
            daily_limit if daily_limit is not None else settings.fallback_daily_limit
        )
        self.clock = clock
        self._day = self._today()
        self._count = 0

    def _today(self) -> date:
        now = self.clock()
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc)
        return now.date()

    def _roll_over(self) -> None:
        today = self._today()
        if today != self._day:
            self._day = today
            self._count = 0

    def can_use(self) -> bool:
        """Whether another fallback is allowed today."""
        self._roll_over()
        return self._count < self.daily_limit

    def record(self) -> int:
        """Count one fallback and return today's total."""
        self._roll_over()
        self._count += 1
        return self._count

    def usage(self) -> FallbackUsage:
        self._roll_over()
        return FallbackUsage(used=self._count, limit=self.daily_limit, day=self._day)
