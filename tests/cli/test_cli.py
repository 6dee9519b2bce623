"""Tests for the payconfirm CLI - Typer commands with CliRunner."""

import pytest
from rich.console import Console
from typer.testing import CliRunner

from payconfirm.cli import main as cli_main
from payconfirm.cli.main import app

pytestmark = pytest.mark.unit

runner = CliRunner()

SCENARIO_TEXT = "You have received Rs. 250.00 via UPI. Txn successful. Google Pay"


@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch, reset_settings_cache):
    """Point the CLI at a temporary data directory and a wide console."""
    monkeypatch.setenv("PAYCONFIRM_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("PAYCONFIRM_PROMETHEUS_ENABLED", "false")
    monkeypatch.setattr(cli_main, "console", Console(width=200))
    return tmp_path / "data"


class TestParseCommand:
    def test_parse_shows_candidate(self):
        result = runner.invoke(app, ["parse", SCENARIO_TEXT])

        assert result.exit_code == 0
        assert "₹250.00" in result.stdout
        assert "Google Pay" in result.stdout

    def test_parse_sms_channel(self):
        result = runner.invoke(
            app, ["parse", "A/c XX1234 credited with INR 1,250.00 via UPI", "--channel", "sms"]
        )

        assert result.exit_code == 0
        assert "1250.00" in result.stdout
        assert "sms" in result.stdout

    def test_parse_without_signal_exits_with_error(self):
        result = runner.invoke(app, ["parse", "Your OTP is 123456"])

        assert result.exit_code == 1
        assert "No payment signal found" in result.stdout


class TestSimulateCommand:
    def test_simulate_confirms(self):
        result = runner.invoke(app, ["simulate", "250.00", "--app", "phonepe"])

        assert result.exit_code == 0
        assert "Outcome: confirmed" in result.stdout
        assert "✅ Payment SIM-" in result.stdout

    def test_simulate_amount_mismatch(self):
        result = runner.invoke(app, ["simulate", "250.00", "--expected", "300.00"])

        assert result.exit_code == 0
        assert "Outcome: no_match" in result.stdout
        assert "Still pending: 1" in result.stdout

    def test_simulate_sms(self):
        result = runner.invoke(app, ["simulate", "99.50", "--channel", "sms", "--app", "Paytm"])

        assert result.exit_code == 0
        assert "Outcome: confirmed" in result.stdout

    def test_invalid_amount(self):
        result = runner.invoke(app, ["simulate", "abc"])

        assert result.exit_code == 1

    def test_unknown_app(self):
        result = runner.invoke(app, ["simulate", "10", "--app", "venmo"])

        assert result.exit_code == 1
        assert "Unknown app template" in result.stdout

    def test_no_persist_by_default(self, cli_env):
        runner.invoke(app, ["simulate", "250.00"])

        assert not (cli_env / "confirmations.json").exists()


class TestHistoryCommand:
    def test_empty_history(self):
        result = runner.invoke(app, ["history"])

        assert result.exit_code == 0
        assert "No confirmations recorded yet" in result.stdout

    def test_history_after_persisted_simulation(self, cli_env):
        runner.invoke(app, ["simulate", "250.00", "--persist"])
        runner.invoke(app, ["simulate", "75.00", "--app", "bhim", "--persist"])

        result = runner.invoke(app, ["history", "--limit", "5"])

        assert result.exit_code == 0
        assert (cli_env / "confirmations.json").exists()
        assert "Confirmations (2)" in result.stdout
        assert "₹75.00" in result.stdout
        assert "BHIM UPI" in result.stdout

    def test_corrupt_history_exits_with_error(self, cli_env):
        cli_env.mkdir(parents=True)
        (cli_env / "confirmations.json").write_text("[{", encoding="utf-8")

        result = runner.invoke(app, ["history"])

        assert result.exit_code == 1


class TestConfigCommand:
    def test_config_lists_settings(self, cli_env):
        result = runner.invoke(app, ["config"])

        assert result.exit_code == 0
        assert "auto_confirm_threshold" in result.stdout
        assert "confirmation_log_path" in result.stdout
        assert str(cli_env / "confirmations.json") in result.stdout
