from __future__ import annotations

import pytest

from opguard_mcp.services.config_service import ConfigService


def test_database_url_required(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPGUARD_MCP_DATABASE_URL", raising=False)
    with pytest.raises(ValueError, match="OPGUARD_MCP_DATABASE_URL"):
        ConfigService.get_database_url()

    monkeypatch.setenv("OPGUARD_MCP_DATABASE_URL", "sqlite:///x.db")
    assert ConfigService.get_database_url() == "sqlite:///x.db"


def test_numeric_settings_fall_back_and_clamp(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPGUARD_MCP_ROW_LIMIT", raising=False)
    monkeypatch.delenv("OPGUARD_MCP_HISTORY_LIMIT", raising=False)
    assert ConfigService.result_row_limit() == 200
    assert ConfigService.history_limit() == 50

    monkeypatch.setenv("OPGUARD_MCP_ROW_LIMIT", "not-a-number")
    monkeypatch.setenv("OPGUARD_MCP_HISTORY_LIMIT", "-4")
    assert ConfigService.result_row_limit() == 200
    assert ConfigService.history_limit() == 1

    monkeypatch.setenv("OPGUARD_MCP_ROW_LIMIT", "25")
    assert ConfigService.result_row_limit() == 25


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("false", False), ("0", False), ("YES", True), ("on", True), ("maybe", True)],
)
def test_auto_execute_flag(monkeypatch: pytest.MonkeyPatch, raw: str, expected: bool) -> None:
    monkeypatch.setenv("OPGUARD_MCP_AUTO_EXECUTE", raw)
    assert ConfigService.auto_execute() is expected


def test_audit_to_database_defaults_true(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPGUARD_MCP_AUDIT_TO_DATABASE", raising=False)
    assert ConfigService.audit_to_database() is True
    monkeypatch.setenv("OPGUARD_MCP_AUDIT_TO_DATABASE", "off")
    assert ConfigService.audit_to_database() is False


def test_extra_critical_tables_extend_policy_store(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPGUARD_MCP_EXTRA_CRITICAL_TABLES", " ledger, Invoices ,,")
    assert ConfigService.extra_critical_tables() == ["ledger", "Invoices"]

    store = ConfigService.build_policy_store()
    assert store.is_critical("ledger")
    assert store.is_critical("invoices")
    assert store.is_critical("users")
