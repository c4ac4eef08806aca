"""
Tests for consumption gating.
"""
import logging
import os
import tempfile
from datetime import date, datetime, timedelta
from unittest.mock import patch

import pytest

from health_credits.core.clock import FixedClock
from health_credits.core.errors import InsufficientCredits, InvalidAmount, StoreUnavailable
from health_credits.core.gate import INSUFFICIENT_CREDITS, ConsumptionGate
from health_credits.core.ledger import LedgerEngine
from health_credits.storage.models import TransactionKind
from health_credits.storage.repository import AccountRepository, initialize_schema


class TestConsumptionGate:
    """Test authorize_consumption."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.clock = FixedClock(datetime(2024, 1, 1, 9, 0))
        self.engine = LedgerEngine(AccountRepository(self.db_path), clock=self.clock, retry_delay=0)
        self.gate = ConsumptionGate(self.engine)

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_sufficient_balance_authorizes_and_debits(self):
        self.engine.open_account("acc-1", age_years=35)

        verdict = self.gate.authorize_consumption("acc-1", 30)

        assert verdict.authorized is True
        assert verdict.new_balance == 70
        assert verdict.error is None
        records = self.engine.history("acc-1")
        assert len(records) == 1
        assert records[0].amount == -30
        assert records[0].kind == TransactionKind.USAGE
        assert records[0].description == "generation usage"

    def test_insufficient_balance_denies_without_charge(self):
        self.engine.open_account("acc-1", age_years=35)
        self.engine.debit("acc-1", 80, "generation usage")
        records_before = len(self.engine.history("acc-1"))

        verdict = self.gate.authorize_consumption("acc-1", 30)

        assert verdict.authorized is False
        assert verdict.new_balance == 20
        assert verdict.error == INSUFFICIENT_CREDITS
        assert self.engine.get_account("acc-1").balance == 20
        assert len(self.engine.history("acc-1")) == records_before

    def test_denial_logged_as_warning(self, caplog):
        self.engine.open_account("acc-1", age_years=35)

        with caplog.at_level(logging.WARNING, logger="health_credits.core.gate"):
            self.gate.authorize_consumption("acc-1", 150, capability="diet_plan")

        denials = [r for r in caplog.records if r.name == "health_credits.core.gate"]
        assert len(denials) == 1
        assert denials[0].levelno == logging.WARNING
        assert "Consumption denied" in denials[0].getMessage()
        assert "capability=diet_plan" in denials[0].getMessage()

    def test_due_recharge_applied_before_check(self):
        self.engine.open_account("acc-1", age_years=70)
        self.engine.debit("acc-1", 90, "generation usage")

        verdict = self.gate.authorize_consumption(
            "acc-1", 30, current_date=date(2024, 1, 1) + timedelta(days=180)
        )

        assert verdict.authorized is True
        assert verdict.recharged is True
        assert verdict.new_balance == 70

    def test_capability_named_in_record(self):
        self.engine.open_account("acc-1", age_years=35)
        self.gate.authorize_consumption("acc-1", 5, capability="diet_plan")
        assert self.engine.history("acc-1")[0].description == "diet_plan usage"

    @pytest.mark.parametrize("cost", [0, -1, 2.5])
    def test_invalid_cost_rejected_before_any_write(self, cost):
        self.engine.open_account("acc-1", age_years=35)
        with pytest.raises(InvalidAmount):
            self.gate.authorize_consumption("acc-1", cost)
        assert self.engine.history("acc-1") == []

    def test_lost_race_reported_as_denial(self):
        self.engine.open_account("acc-1", age_years=35)
        with patch.object(
            self.engine, "debit",
            side_effect=InsufficientCredits("acc-1", 30, 10)
        ):
            verdict = self.gate.authorize_consumption("acc-1", 30)

        assert verdict.authorized is False
        assert verdict.new_balance == 10
        assert verdict.error == INSUFFICIENT_CREDITS

    def test_store_failure_propagates(self):
        self.engine.open_account("acc-1", age_years=35)
        with patch.object(
            self.engine, "debit",
            side_effect=StoreUnavailable("Store write failed: disk I/O error")
        ):
            with pytest.raises(StoreUnavailable):
                self.gate.authorize_consumption("acc-1", 30)
