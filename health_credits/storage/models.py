"""
Data models for storage layer.

Defines the account row and the append-only transaction records that justify it.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional


class TransactionKind(Enum):
    """Cause of a balance change."""
    USAGE = "usage"
    RECHARGE = "recharge"
    TOPUP = "topup"


@dataclass(frozen=True)
class Account:
    """Snapshot of a credit-bearing account.

    The balance is a cached aggregate of the ledger: starting_grant plus the
    sum of every transaction amount recorded for the account.
    """
    id: str
    balance: int
    age_years: int
    starting_grant: int
    last_recharge_date: date
    created_at: datetime


@dataclass(frozen=True)
class TransactionRecord:
    """Immutable audit entry for a single balance change.

    Negative amounts are consumption, positive amounts are recharge or top-up.
    Once written, these records must never be modified.
    """
    id: int
    account_id: str
    amount: int
    description: str
    kind: TransactionKind
    created_at: datetime
    reference: Optional[str] = None
