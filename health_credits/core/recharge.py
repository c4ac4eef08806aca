"""
Periodic recharge policy.

Decides whether an account is due for replenishment from its age bracket and
the time elapsed since its last recharge. Pure functions only; applying the
decision is the ledger's job.

Rules:
- Accounts with age_years > senior_age_threshold use the senior window (180 days)
- Everyone else uses the standard window (365 days)
- Due iff elapsed days >= window
"""

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Union


DateLike = Union[date, datetime]


@dataclass(frozen=True)
class RechargeDecision:
    """Outcome of evaluating the recharge policy for one account."""
    due: bool
    elapsed_days: int
    window_days: int
    previous_balance: int
    new_balance: int
    new_last_recharge_date: date

    @property
    def delta(self) -> int:
        """Balance change that applying this decision implies."""
        return self.new_balance - self.previous_balance


@dataclass(frozen=True)
class RechargePolicy:
    """Age-bracketed replenishment policy."""
    recharge_amount: int = 100
    senior_age_threshold: int = 60
    senior_window_days: int = 180
    standard_window_days: int = 365

    def __post_init__(self):
        """Validate policy values are positive."""
        if self.recharge_amount <= 0:
            raise ValueError("recharge_amount must be > 0")
        if self.senior_window_days <= 0:
            raise ValueError("senior_window_days must be > 0")
        if self.standard_window_days <= 0:
            raise ValueError("standard_window_days must be > 0")

    def window_for_age(self, age_years: int) -> int:
        """Eligibility window in days for the given age."""
        if age_years > self.senior_age_threshold:
            return self.senior_window_days
        return self.standard_window_days

    def evaluate(
        self,
        age_years: int,
        last_recharge: DateLike,
        current: DateLike,
        balance: int,
    ) -> RechargeDecision:
        """Evaluate whether a recharge is due.

        A recharge raises the balance to recharge_amount and never lowers it;
        an account already holding more keeps its balance and only the
        recharge date advances.

        Args:
            age_years: Account holder age, selects the window
            last_recharge: Day of the last successful recharge
            current: Evaluation instant
            balance: Current stored balance

        Returns:
            RechargeDecision; when not due, balance and date are unchanged
        """
        window = self.window_for_age(age_years)
        elapsed = elapsed_days(last_recharge, current)

        if elapsed >= window:
            return RechargeDecision(
                due=True,
                elapsed_days=elapsed,
                window_days=window,
                previous_balance=balance,
                new_balance=max(balance, self.recharge_amount),
                new_last_recharge_date=_as_date(current),
            )
        return RechargeDecision(
            due=False,
            elapsed_days=elapsed,
            window_days=window,
            previous_balance=balance,
            new_balance=balance,
            new_last_recharge_date=_as_date(last_recharge),
        )


def elapsed_days(start: DateLike, end: DateLike) -> int:
    """Whole days between two instants, absolute and rounded up.

    Clock skew that puts start after end still yields a non-negative count.
    Dates are taken at midnight.
    """
    delta = abs(_as_datetime(end) - _as_datetime(start))
    days = delta.days
    if delta.seconds or delta.microseconds:
        days += 1
    return days


def _as_datetime(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    return datetime.combine(value, time.min)


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value
