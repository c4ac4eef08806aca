"""
Ledger error types.

Every failure leaves account and transaction state exactly as it was before
the call. Callers treat any of these as "no consumption, no charge".
"""

from typing import Optional


class LedgerError(Exception):
    """Base class for all credit ledger failures."""


class InsufficientCredits(LedgerError):
    """Raised when an account balance is below the requested amount."""

    def __init__(self, account_id: str, requested: int, available: int):
        self.account_id = account_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Account {account_id}: requested {requested}, available {available}"
        )


class InvalidAmount(LedgerError, ValueError):
    """Raised when a debit or credit amount is not a positive integer."""

    def __init__(self, amount, reason: str = "amount must be a positive integer"):
        self.amount = amount
        super().__init__(f"Invalid amount {amount!r}: {reason}")


class ConcurrentConflict(LedgerError):
    """Raised when store contention outlasts the retry budget.

    Transient: the whole operation is safe to retry.
    """

    def __init__(self, account_id: str, attempts: int):
        self.account_id = account_id
        self.attempts = attempts
        super().__init__(
            f"Account {account_id}: write contention after {attempts} attempts"
        )


class StoreUnavailable(LedgerError):
    """Raised when the persistence layer fails during a request."""


class AccountNotFound(LedgerError):
    """Raised when an operation targets an unknown account."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class DuplicatePayment(LedgerError):
    """Raised when a payment reference has already been credited."""

    def __init__(self, reference: str, account_id: Optional[str] = None):
        self.reference = reference
        self.account_id = account_id
        super().__init__(f"Payment reference already applied: {reference}")
