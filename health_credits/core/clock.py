"""
Clock abstractions injected into the ledger.
"""

from datetime import date, datetime, timedelta


class SystemClock:
    """Wall clock backed by the local system time."""

    def now(self) -> datetime:
        return datetime.now()

    def today(self) -> date:
        return date.today()


class FixedClock:
    """Manually driven clock for tests and replays."""

    def __init__(self, current: datetime):
        if not isinstance(current, datetime):
            current = datetime.combine(current, datetime.min.time())
        self.current = current

    def now(self) -> datetime:
        return self.current

    def today(self) -> date:
        return self.current.date()

    def advance(self, days: int = 0, **kwargs) -> None:
        """Move the clock forward by the given interval."""
        self.current = self.current + timedelta(days=days, **kwargs)
