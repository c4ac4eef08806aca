"""
Consumption gate for metered capabilities.

The only entry point a paid capability may use before doing work. Enforcement
order:
1. Cost validation - rejects non-positive costs before any read
2. Effective balance - applies a due recharge before comparing
3. Atomic debit - re-checks the balance under the write lock

The debit happens before the external action and is kept if that action
fails later (reservation-style charge).
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

from .errors import InsufficientCredits, InvalidAmount
from .ledger import LedgerEngine

logger = logging.getLogger(__name__)

INSUFFICIENT_CREDITS = "insufficient_credits"


@dataclass(frozen=True)
class ConsumptionAuthorization:
    """Verdict handed back to a metered capability."""
    authorized: bool
    new_balance: int
    cost: int
    recharged: bool = False
    error: Optional[str] = None


class ConsumptionGate:
    """Checks and charges credits before a metered action runs."""

    def __init__(self, engine: LedgerEngine):
        self.engine = engine

    def authorize_consumption(
        self,
        account_id: str,
        cost: int,
        current_date: Optional[Union[date, datetime]] = None,
        capability: str = "generation"
    ) -> ConsumptionAuthorization:
        """Charge cost credits if the account can afford them.

        Args:
            account_id: Already-authenticated account id
            cost: Credits the action costs, supplied before any work
            current_date: Evaluation instant for recharge; defaults to now
            capability: Name of the consuming capability, used in the record

        Returns:
            ConsumptionAuthorization; authorized=False with
            error="insufficient_credits" when the balance is too low, in
            which case nothing was charged

        Raises:
            InvalidAmount: If cost is not a positive integer
            LedgerError: Any other ledger failure, with no charge made
        """
        if isinstance(cost, bool) or not isinstance(cost, int) or cost <= 0:
            raise InvalidAmount(cost, "cost must be a positive integer")

        balance = self.engine.get_effective_balance(account_id, current_date)
        if balance.balance < cost:
            logger.warning(
                "Consumption denied: account=%s capability=%s cost=%s balance=%s",
                account_id, capability, cost, balance.balance,
            )
            return ConsumptionAuthorization(
                authorized=False,
                new_balance=balance.balance,
                cost=cost,
                recharged=balance.recharged,
                error=INSUFFICIENT_CREDITS
            )

        try:
            new_balance = self.engine.debit(account_id, cost, f"{capability} usage")
        except InsufficientCredits as e:
            # A concurrent debit won the race between the read and the write
            return ConsumptionAuthorization(
                authorized=False,
                new_balance=e.available,
                cost=cost,
                recharged=balance.recharged,
                error=INSUFFICIENT_CREDITS
            )

        return ConsumptionAuthorization(
            authorized=True,
            new_balance=new_balance,
            cost=cost,
            recharged=balance.recharged
        )
