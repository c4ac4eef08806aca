"""
Top-up applier for confirmed external payments.
"""

import logging
from dataclasses import dataclass

from health_credits.storage.models import TransactionKind

from .ledger import LedgerEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TopUpResult:
    """Outcome of crediting one confirmed payment."""
    account_id: str
    reference: str
    credits_added: int
    new_balance: int


class TopUpApplier:
    """Credits accounts for payments confirmed by the payment provider.

    Each payment reference is stored on its transaction record under a
    UNIQUE constraint, so a repeated confirmation is rejected with
    DuplicatePayment instead of crediting twice.
    """

    def __init__(self, engine: LedgerEngine):
        self.engine = engine

    def apply_confirmed_payment(
        self,
        account_id: str,
        credits_to_add: int,
        reference: str
    ) -> TopUpResult:
        """Credit an account once per confirmed payment reference.

        Args:
            account_id: Account the payment was made for
            credits_to_add: Positive number of credits purchased
            reference: Stable payment identifier from the provider

        Returns:
            TopUpResult with the post-credit balance

        Raises:
            ValueError: If reference is missing or blank
            InvalidAmount: If credits_to_add is not a positive integer
            DuplicatePayment: If reference was already applied
        """
        if not isinstance(reference, str) or not reference.strip():
            raise ValueError("reference is required and cannot be empty")
        reference = reference.strip()

        new_balance = self.engine.credit(
            account_id,
            credits_to_add,
            f"Credit purchase {reference}",
            TransactionKind.TOPUP,
            reference=reference
        )
        logger.info(
            "Payment applied: account=%s reference=%s credits=%s",
            account_id, reference, credits_to_add,
        )
        return TopUpResult(
            account_id=account_id,
            reference=reference,
            credits_added=credits_to_add,
            new_balance=new_balance
        )
