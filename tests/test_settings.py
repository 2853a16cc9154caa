"""Tests for environment based configuration."""

from decimal import Decimal

import pytest

from shared_ledger.config import LedgerSettings, get_settings, validate_all_settings
from shared_ledger.models import Roster


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Run every test in an empty directory so no .env file is picked up."""
    monkeypatch.chdir(tmp_path)
    for name in (
        "LEDGER_FIRST_PARTICIPANT",
        "LEDGER_SECOND_PARTICIPANT",
        "LEDGER_SETTLE_EPSILON",
        "GOOGLE_SHEETS_CREDENTIALS_PATH",
        "GOOGLE_SHEETS_SPREADSHEET_ID",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestLedgerSettings:
    """Tests for LedgerSettings."""

    def test_defaults(self):
        settings = LedgerSettings()
        assert settings.first_participant == "Tomi"
        assert settings.second_participant == "Damien"
        assert settings.reimbursement_marker == " (Remboursement)"
        assert settings.settle_epsilon == Decimal("0.01")

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("LEDGER_FIRST_PARTICIPANT", "Alice")
        monkeypatch.setenv("LEDGER_SETTLE_EPSILON", "0.05")
        settings = LedgerSettings()
        assert settings.first_participant == "Alice"
        assert settings.settle_epsilon == Decimal("0.05")

    def test_non_positive_epsilon_rejected(self, monkeypatch):
        monkeypatch.setenv("LEDGER_SETTLE_EPSILON", "0")
        with pytest.raises(ValueError):
            LedgerSettings()

    def test_roster_from_settings(self, monkeypatch):
        monkeypatch.setenv("LEDGER_SECOND_PARTICIPANT", "Bob")
        roster = Roster.from_settings(LedgerSettings())
        assert roster.participants == ("Tomi", "Bob")


class TestValidateAllSettings:
    """Tests for the startup check."""

    def test_missing_google_settings_reported(self):
        results = validate_all_settings()
        assert results["ledger"] is True
        assert results["google_sheets"] is False
        assert "google_sheets_error" in results

    def test_google_settings_present(self, monkeypatch, tmp_path):
        credentials = tmp_path / "credentials.json"
        credentials.write_text("{}")
        monkeypatch.setenv("GOOGLE_SHEETS_CREDENTIALS_PATH", str(credentials))
        monkeypatch.setenv("GOOGLE_SHEETS_SPREADSHEET_ID", "sheet-123")

        results = validate_all_settings()
        assert results["google_sheets"] is True
