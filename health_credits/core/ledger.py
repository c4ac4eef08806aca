"""
Credit ledger engine.

Sole mutator of account balances. Every balance change is written together
with its transaction record inside one atomic unit.

Concurrency model:
1. A per-account lock serializes same-account operations within the process
2. Each unit runs in a BEGIN IMMEDIATE transaction, which serializes writers
   across processes sharing the database file
3. Lock contention is retried a bounded number of times, then surfaced as
   ConcurrentConflict

Recharge is applied lazily when the balance is read; there is no timer.
"""

import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Dict, Iterator, List, Optional, TypeVar, Union

from health_credits.config.loader import LedgerConfig
from health_credits.storage.models import Account, TransactionKind, TransactionRecord
from health_credits.storage.repository import AccountRepository, LedgerUnit

from .clock import SystemClock
from .errors import (
    AccountNotFound,
    ConcurrentConflict,
    DuplicatePayment,
    InsufficientCredits,
    InvalidAmount,
    LedgerError,
    StoreUnavailable,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

RECHARGE_DESCRIPTION = "Periodic credit renewal"

# Largest value SQLite stores in an INTEGER column
MAX_CREDITS = 2 ** 63 - 1


@dataclass(frozen=True)
class BalanceResult:
    """Balance as seen after any due recharge was applied."""
    account_id: str
    balance: int
    recharged: bool
    last_recharge_date: date


@dataclass(frozen=True)
class Reconciliation:
    """Comparison of the cached balance against the ledger it caches."""
    account_id: str
    balance: int
    starting_grant: int
    ledger_total: int

    @property
    def expected_balance(self) -> int:
        return self.starting_grant + self.ledger_total

    @property
    def consistent(self) -> bool:
        return self.balance == self.expected_balance


class _LockEntry:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = threading.Lock()
        self.holders = 0


class AccountLocks:
    """Registry handing out one lock per account id.

    An entry lives only while some thread holds or waits on it, so the
    registry never outgrows the number of in-flight operations.
    """

    def __init__(self):
        self._locks: Dict[str, _LockEntry] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, account_id: str) -> Iterator[None]:
        """Hold the account's lock for the duration of the block."""
        with self._guard:
            entry = self._locks.get(account_id)
            if entry is None:
                entry = _LockEntry()
                self._locks[account_id] = entry
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[account_id]


def _require_positive(amount) -> None:
    # bool is an int subclass; reject it explicitly
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(amount, "amount must be an integer")
    if amount <= 0:
        raise InvalidAmount(amount, "amount must be > 0")
    if amount > MAX_CREDITS:
        raise InvalidAmount(amount, f"amount must be <= {MAX_CREDITS}")


def _is_contention(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


class LedgerEngine:
    """Orchestrates balance reads, recharges, debits and credits.

    Usage:
        engine = LedgerEngine(AccountRepository("credits.db"))
        engine.open_account("user-1", age_years=42)
        result = engine.get_effective_balance("user-1")
        engine.debit("user-1", 10, "AI generation")
    """

    def __init__(
        self,
        repository: AccountRepository,
        clock=None,
        config: Optional[LedgerConfig] = None,
        retry_delay: float = 0.05
    ):
        """Initialize the engine with its injected collaborators.

        Args:
            repository: Account store
            clock: Object with now() and today(); defaults to the system clock
            config: Ledger settings; defaults to LedgerConfig.default()
            retry_delay: Base backoff in seconds between contention retries
        """
        self.repository = repository
        self.clock = clock or SystemClock()
        self.config = config or LedgerConfig.default()
        self.policy = self.config.recharge_policy()
        self.max_retries = self.config.storage.max_retries
        self.retry_delay = retry_delay
        self._locks = AccountLocks()

    @classmethod
    def from_config(cls, config: LedgerConfig, clock=None) -> "LedgerEngine":
        """Build an engine backed by the SQLite store the config names."""
        repository = AccountRepository(
            config.storage.db_path,
            timeout=config.storage.busy_timeout_seconds
        )
        return cls(repository, clock=clock, config=config)

    def open_account(
        self,
        account_id: str,
        age_years: int,
        today: Optional[date] = None
    ) -> Account:
        """Create an account holding the starting grant.

        Raises:
            ValueError: If account_id is empty, age is negative or the account exists
        """
        if not account_id or not account_id.strip():
            raise ValueError("account_id is required and cannot be empty")
        if isinstance(age_years, bool) or not isinstance(age_years, int) or age_years < 0:
            raise ValueError("age_years must be a non-negative integer")
        opening_day = today or self.clock.today()

        def _open(unit: LedgerUnit) -> Account:
            if unit.read_account(account_id) is not None:
                raise ValueError(f"Account already exists: {account_id}")
            return unit.insert_account(
                account_id,
                balance=self.config.grants.starting_grant,
                age_years=age_years,
                last_recharge_date=opening_day
            )

        account = self._run_atomic(account_id, _open)
        logger.info(
            "Account opened: account=%s grant=%s age=%s",
            account_id, account.balance, age_years,
        )
        return account

    def get_account(self, account_id: str) -> Account:
        """Read an account without applying any recharge.

        Raises:
            AccountNotFound: If the account does not exist
        """
        account = self._read(self.repository.get_account, account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return account

    def get_effective_balance(
        self,
        account_id: str,
        current_date: Optional[Union[date, datetime]] = None
    ) -> BalanceResult:
        """Return the balance after applying a due recharge.

        The recharge decision is made on a plain read first; only when a
        recharge looks due is it re-evaluated and applied inside an atomic
        unit, so concurrent readers recharge exactly once per window.

        Args:
            account_id: Already-authenticated account id
            current_date: Evaluation instant; defaults to the clock's now()

        Returns:
            BalanceResult with recharged=True when this call renewed the window
        """
        current = current_date or self.clock.now()
        account = self.get_account(account_id)
        decision = self.policy.evaluate(
            account.age_years, account.last_recharge_date, current, account.balance
        )
        if not decision.due:
            return BalanceResult(account_id, account.balance, False, account.last_recharge_date)

        def _recharge(unit: LedgerUnit) -> BalanceResult:
            fresh = unit.read_account(account_id)
            if fresh is None:
                raise AccountNotFound(account_id)
            decision = self.policy.evaluate(
                fresh.age_years, fresh.last_recharge_date, current, fresh.balance
            )
            if not decision.due:
                return BalanceResult(account_id, fresh.balance, False, fresh.last_recharge_date)

            # No audit record without a balance change; only the date advances
            if decision.delta > 0:
                unit.append_transaction(
                    account_id, decision.delta, RECHARGE_DESCRIPTION, TransactionKind.RECHARGE
                )
            unit.write_balance(account_id, decision.new_balance, decision.new_last_recharge_date)
            logger.info(
                "Recharge applied: account=%s elapsed_days=%s window=%s delta=%s balance=%s",
                account_id, decision.elapsed_days, decision.window_days,
                decision.delta, decision.new_balance,
            )
            return BalanceResult(
                account_id, decision.new_balance, True, decision.new_last_recharge_date
            )

        return self._run_atomic(account_id, _recharge)

    def debit(self, account_id: str, amount: int, description: str) -> int:
        """Atomically remove credits and record a usage transaction.

        Returns:
            Balance after the debit

        Raises:
            InvalidAmount: If amount is not a positive integer
            InsufficientCredits: If the balance is below amount; nothing is written
        """
        _require_positive(amount)

        def _debit(unit: LedgerUnit) -> int:
            account = unit.read_account(account_id)
            if account is None:
                raise AccountNotFound(account_id)
            if account.balance < amount:
                logger.warning(
                    "Insufficient credits: account=%s requested=%s available=%s",
                    account_id, amount, account.balance,
                )
                raise InsufficientCredits(account_id, amount, account.balance)

            new_balance = account.balance - amount
            unit.append_transaction(account_id, -amount, description, TransactionKind.USAGE)
            unit.write_balance(account_id, new_balance)
            return new_balance

        new_balance = self._run_atomic(account_id, _debit)
        logger.info(
            "Debit applied: account=%s amount=%s balance=%s",
            account_id, amount, new_balance,
        )
        return new_balance

    def credit(
        self,
        account_id: str,
        amount: int,
        description: str,
        kind: Union[TransactionKind, str],
        reference: Optional[str] = None
    ) -> int:
        """Atomically add credits and record a matching positive transaction.

        Args:
            account_id: Account to credit
            amount: Positive number of credits
            description: Label of the causing action
            kind: TransactionKind.RECHARGE or TransactionKind.TOPUP
            reference: Optional external reference; each may be applied once

        Returns:
            Balance after the credit

        Raises:
            InvalidAmount: If amount is not a positive integer
            ValueError: If kind is not recharge or topup
            DuplicatePayment: If reference was already recorded
        """
        _require_positive(amount)
        kind = TransactionKind(kind)
        if kind is TransactionKind.USAGE:
            raise ValueError("credit kind must be 'recharge' or 'topup'")

        def _credit(unit: LedgerUnit) -> int:
            account = unit.read_account(account_id)
            if account is None:
                raise AccountNotFound(account_id)
            new_balance = account.balance + amount
            if new_balance > MAX_CREDITS:
                raise InvalidAmount(amount, f"balance would exceed {MAX_CREDITS}")
            try:
                unit.append_transaction(account_id, amount, description, kind, reference)
            except sqlite3.IntegrityError as e:
                if reference is None:
                    raise
                logger.warning(
                    "Duplicate payment reference: reference=%s account=%s",
                    reference, account_id,
                )
                raise DuplicatePayment(reference, account_id) from e
            unit.write_balance(account_id, new_balance)
            return new_balance

        new_balance = self._run_atomic(account_id, _credit)
        logger.info(
            "Credit applied: account=%s kind=%s amount=%s balance=%s",
            account_id, kind.value, amount, new_balance,
        )
        return new_balance

    def history(
        self,
        account_id: str,
        kind: Optional[TransactionKind] = None,
        limit: int = 100
    ) -> List[TransactionRecord]:
        """Transaction records for an account, newest first."""
        self.get_account(account_id)
        return self._read(self.repository.fetch_transactions, account_id, kind=kind, limit=limit)

    def reconcile(self, account_id: str) -> Reconciliation:
        """Check the cached balance against starting grant plus ledger total."""
        def _snapshot(unit: LedgerUnit) -> Reconciliation:
            account = unit.read_account(account_id)
            if account is None:
                raise AccountNotFound(account_id)
            return Reconciliation(
                account_id=account_id,
                balance=account.balance,
                starting_grant=account.starting_grant,
                ledger_total=unit.sum_amounts(account_id)
            )

        # Read inside a unit so no write lands between the two queries
        result = self._run_atomic(account_id, _snapshot)
        if not result.consistent:
            logger.error(
                "Ledger mismatch: account=%s balance=%s expected=%s",
                account_id, result.balance, result.expected_balance,
            )
        return result

    def _read(self, fn: Callable[..., T], *args, **kwargs) -> T:
        try:
            return fn(*args, **kwargs)
        except sqlite3.Error as e:
            logger.error("Store read failed: %s", e)
            raise StoreUnavailable(f"Store read failed: {e}") from e

    def _run_atomic(self, account_id: str, operation: Callable[[LedgerUnit], T]) -> T:
        """Run operation inside an atomic unit under the account's lock.

        Any exception rolls the unit back. Ledger errors propagate unchanged,
        contention is retried, and other store errors become StoreUnavailable.
        """
        with self._locks.hold(account_id):
            for attempt in range(1, self.max_retries + 1):
                try:
                    with self.repository.atomic(self.clock.now()) as unit:
                        return operation(unit)
                except LedgerError:
                    raise
                except sqlite3.OperationalError as e:
                    if not _is_contention(e):
                        logger.error("Store write failed: account=%s error=%s", account_id, e)
                        raise StoreUnavailable(f"Store write failed: {e}") from e
                    logger.warning(
                        "Write contention: account=%s attempt=%s/%s",
                        account_id, attempt, self.max_retries,
                    )
                    if attempt < self.max_retries:
                        time.sleep(self.retry_delay * attempt)
                except sqlite3.Error as e:
                    logger.error("Store write failed: account=%s error=%s", account_id, e)
                    raise StoreUnavailable(f"Store write failed: {e}") from e
            raise ConcurrentConflict(account_id, self.max_retries)
