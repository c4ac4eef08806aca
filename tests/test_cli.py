"""
Tests for the CLI interface.
"""
import os
import tempfile

import pytest
import yaml
from typer.testing import CliRunner

from health_credits.cli.main import (
    EXIT_CODE_FAIL,
    EXIT_CODE_INSUFFICIENT,
    EXIT_CODE_OK,
    app,
)

runner = CliRunner()


@pytest.fixture
def config_path():
    """Write a config pointing at a temporary database and initialize it."""
    with tempfile.TemporaryDirectory() as temp_dir:
        path = os.path.join(temp_dir, "config.yaml")
        with open(path, 'w', encoding='utf-8') as f:
            yaml.dump({
                "storage": {"db_path": os.path.join(temp_dir, "cli.db")},
                "costs": {"default": 10, "capabilities": {"meal_plan": 40}}
            }, f)
        result = runner.invoke(app, ["--config", path, "init"])
        assert result.exit_code == EXIT_CODE_OK
        yield path


def invoke(config_path, *args):
    return runner.invoke(app, ["--config", config_path, *args])


class TestCLI:
    """Test CLI commands."""

    def test_no_command_prints_banner(self):
        result = runner.invoke(app, [])
        assert result.exit_code == EXIT_CODE_OK
        assert "Health Credits" in result.output

    def test_invalid_config_path(self):
        result = runner.invoke(app, ["--config", "/nonexistent/config.yaml", "init"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid configuration" in result.output

    def test_init_reports_success(self, config_path):
        result = invoke(config_path, "init")
        assert result.exit_code == EXIT_CODE_OK
        assert "Database initialized successfully" in result.output

    def test_open_account_and_balance(self, config_path):
        result = invoke(config_path, "open-account", "acc-1", "--age", "42")
        assert result.exit_code == EXIT_CODE_OK
        assert "100 credits" in result.output

        result = invoke(config_path, "balance", "acc-1")
        assert result.exit_code == EXIT_CODE_OK
        assert "Balance: 100" in result.output

    def test_duplicate_account_fails(self, config_path):
        invoke(config_path, "open-account", "acc-1", "--age", "42")
        result = invoke(config_path, "open-account", "acc-1", "--age", "42")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "already exists" in result.output

    def test_balance_unknown_account(self, config_path):
        result = invoke(config_path, "balance", "nobody")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Account not found" in result.output

    def test_consume_uses_configured_cost(self, config_path):
        invoke(config_path, "open-account", "acc-1", "--age", "42")

        result = invoke(config_path, "consume", "acc-1")
        assert result.exit_code == EXIT_CODE_OK
        assert "Charged 10 credits, balance 90" in result.output

        result = invoke(config_path, "consume", "acc-1", "--capability", "meal_plan")
        assert result.exit_code == EXIT_CODE_OK
        assert "balance 50" in result.output

    def test_consume_insufficient_has_distinct_exit_code(self, config_path):
        invoke(config_path, "open-account", "acc-1", "--age", "42")

        result = invoke(config_path, "consume", "acc-1", "--cost", "150")

        assert result.exit_code == EXIT_CODE_INSUFFICIENT
        assert "Insufficient credits" in result.output

    def test_consume_invalid_cost(self, config_path):
        invoke(config_path, "open-account", "acc-1", "--age", "42")
        result = invoke(config_path, "consume", "acc-1", "--cost", "0")
        assert result.exit_code == EXIT_CODE_FAIL

    def test_topup_and_duplicate(self, config_path):
        invoke(config_path, "open-account", "acc-1", "--age", "42")

        result = invoke(config_path, "topup", "acc-1", "--credits", "30", "--reference", "mp-1")
        assert result.exit_code == EXIT_CODE_OK
        assert "balance 130" in result.output

        result = invoke(config_path, "topup", "acc-1", "--credits", "30", "--reference", "mp-1")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Already applied" in result.output

    def test_history_lists_transactions(self, config_path):
        invoke(config_path, "open-account", "acc-1", "--age", "42")
        invoke(config_path, "consume", "acc-1")
        invoke(config_path, "topup", "acc-1", "--credits", "30", "--reference", "mp-1")

        result = invoke(config_path, "history", "acc-1")
        assert result.exit_code == EXIT_CODE_OK
        assert "usage" in result.output
        assert "topup" in result.output
        assert "-10" in result.output
        assert "+30" in result.output

        result = invoke(config_path, "history", "acc-1", "--kind", "topup")
        assert "usage" not in result.output

    def test_history_empty(self, config_path):
        invoke(config_path, "open-account", "acc-1", "--age", "42")
        result = invoke(config_path, "history", "acc-1")
        assert result.exit_code == EXIT_CODE_OK
        assert "No transactions recorded" in result.output

    def test_history_invalid_kind(self, config_path):
        invoke(config_path, "open-account", "acc-1", "--age", "42")
        result = invoke(config_path, "history", "acc-1", "--kind", "bonus")
        assert result.exit_code == EXIT_CODE_FAIL

    def test_reconcile(self, config_path):
        invoke(config_path, "open-account", "acc-1", "--age", "42")
        invoke(config_path, "consume", "acc-1")

        result = invoke(config_path, "reconcile", "acc-1")
        assert result.exit_code == EXIT_CODE_OK
        assert "Ledger consistent" in result.output

    def test_config_is_scoped_to_each_invocation(self, config_path):
        import health_credits.cli.main as cli_main

        invoke(config_path, "open-account", "acc-1", "--age", "42")

        with tempfile.TemporaryDirectory() as other_dir:
            other_path = os.path.join(other_dir, "config.yaml")
            with open(other_path, 'w', encoding='utf-8') as f:
                yaml.dump({
                    "ledger": {"starting_grant": 25},
                    "storage": {"db_path": os.path.join(other_dir, "other.db")}
                }, f)
            assert invoke(other_path, "init").exit_code == EXIT_CODE_OK

            result = invoke(other_path, "open-account", "acc-1", "--age", "42")
            assert result.exit_code == EXIT_CODE_OK
            assert "25 credits" in result.output

        result = invoke(config_path, "balance", "acc-1")
        assert result.exit_code == EXIT_CODE_OK
        assert "Balance: 100" in result.output
        assert not hasattr(cli_main, "_state")
