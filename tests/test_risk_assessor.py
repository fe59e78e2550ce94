from __future__ import annotations

import pytest

from opguard_mcp.models import (
    BusinessOperation,
    ExecutionContext,
    ExecutionRequest,
    MigrationOperation,
    Operation,
    QueryOperation,
    SchemaChangeOperation,
    Severity,
    ValidationIssue,
)
from opguard_mcp.safety import (
    PolicyStore,
    RiskAssessor,
    SafetyPolicy,
    SafetyRule,
    StaticSchemaMetadata,
    build_recommendations,
    derive_risk_level,
)


def _req(operation: Operation) -> ExecutionRequest:
    return ExecutionRequest(
        operation=operation,
        context=ExecutionContext(user_id="u", business_unit_id="bu"),
        requested_by="agent",
    )


@pytest.mark.parametrize(
    "sql",
    [
        "DELETE FROM orders",
        "delete from t",
        "UPDATE orders SET status = 'x'",
        "update t set a = 1",
    ],
)
def test_unbounded_delete_or_update_is_critical(sql: str) -> None:
    result = RiskAssessor(PolicyStore()).assess(_req(QueryOperation(sql=sql)))
    assert result.risk_level == "critical"
    assert result.is_valid is False
    assert result.requires_approval is True
    assert any(i.category == "data_loss" and i.severity == "critical" for i in result.issues)


def test_update_with_where_on_one_line_is_still_flagged() -> None:
    # Textual heuristic, not a parser: the UPDATE pattern matches the whole line.
    result = RiskAssessor(PolicyStore()).assess(
        _req(QueryOperation(sql="UPDATE orders SET status = 'x' WHERE id = 1"))
    )
    assert result.risk_level == "critical"
    assert all(i.category == "security" for i in result.issues)


def test_plain_bounded_select_is_low_risk() -> None:
    result = RiskAssessor(PolicyStore()).assess(
        _req(QueryOperation(sql="SELECT id, total FROM orders WHERE id = 3 LIMIT 5"))
    )
    assert result.issues == []
    assert result.risk_level == "low"
    assert result.is_valid is True
    assert result.requires_approval is False
    assert result.recommendations == []
    assert result.estimated_impact.reversibility == "reversible"
    assert result.estimated_impact.affected_tables == ["orders"]
    assert result.estimated_impact.business_processes == ["Order Processing", "Fulfillment"]
    assert result.estimated_impact.data_integrity_risk == 10


@pytest.mark.parametrize(
    "sql",
    [
        "SELECT id FROM orders WHERE id = 1; DROP TABLE orders",
        "SELECT name FROM products UNION SELECT password FROM accounts",
        "SELECT id FROM orders WHERE name = 'a' --",
        "SELECT /* hidden */ id FROM orders",
        "EXEC('select 1')",
        "SELECT 1; exec xp_cmdshell 'dir'",
    ],
)
def test_injection_shapes_are_critical_security(sql: str) -> None:
    result = RiskAssessor(PolicyStore()).assess(_req(QueryOperation(sql=sql)))
    assert result.risk_level == "critical"
    assert any(i.category == "security" and i.severity == "critical" for i in result.issues)
    assert "Review and sanitize all user inputs" in result.recommendations


def test_critical_table_modification_is_warning() -> None:
    result = RiskAssessor(PolicyStore()).assess(
        _req(QueryOperation(sql="DELETE FROM equipment\nWHERE id = 7"))
    )
    issues = [(i.category, i.severity, i.affected_tables) for i in result.issues]
    assert issues == [("business_logic", "warning", ["equipment"])]
    assert result.risk_level == "medium"


def test_scenario_a_select_star_from_customers() -> None:
    result = RiskAssessor(PolicyStore()).assess(_req(QueryOperation(sql="SELECT * FROM customers")))
    pairs = [(i.category, i.severity) for i in result.issues]
    assert pairs.count(("compliance", "warning")) == 1
    assert pairs.count(("performance", "warning")) == 1
    assert len(pairs) == 2
    assert result.risk_level == "medium"
    assert result.requires_approval is False
    assert result.is_valid is True


def test_scenario_b_drop_critical_table() -> None:
    result = RiskAssessor(PolicyStore()).assess(
        _req(SchemaChangeOperation(change_type="drop_table", table_name="users"))
    )
    assert result.risk_level == "critical"
    assert result.requires_approval is True
    assert result.estimated_impact.reversibility == "irreversible"
    assert result.estimated_impact.data_integrity_risk == 90


def test_scenario_c_dependents_make_drop_high() -> None:
    store = PolicyStore()
    assert store.remove_critical_table("audit_logs")
    metadata = StaticSchemaMetadata(dependents={"audit_logs": ["audit_archive", "audit_views"]})

    result = RiskAssessor(store, metadata).assess(
        _req(SchemaChangeOperation(change_type="drop_table", table_name="audit_logs"))
    )

    assert result.risk_level == "high"
    [issue] = result.issues
    assert (issue.category, issue.severity) == ("data_loss", "error")
    assert issue.affected_tables == ["audit_archive", "audit_views"]
    assert "audit_archive" in issue.message


def test_drop_of_critical_table_with_dependents_stays_critical() -> None:
    metadata = StaticSchemaMetadata(dependents={"audit_logs": ["audit_archive"]})
    result = RiskAssessor(PolicyStore(), metadata).assess(
        _req(SchemaChangeOperation(change_type="drop_table", table_name="audit_logs"))
    )
    assert result.risk_level == "critical"
    assert len(result.issues) == 2


def test_alter_critical_table_is_business_warning() -> None:
    result = RiskAssessor(PolicyStore()).assess(
        _req(
            SchemaChangeOperation(
                change_type="alter_table",
                table_name="employees",
                ddl="ALTER TABLE employees ADD COLUMN badge TEXT",
            )
        )
    )
    assert [(i.category, i.severity) for i in result.issues] == [("business_logic", "warning")]
    assert result.estimated_impact.reversibility == "reversible"


def test_metadata_failure_does_not_abort_assessment() -> None:
    class Broken:
        def dependent_tables(self, table: str) -> list[str]:
            raise RuntimeError("offline")

        def row_count(self, table: str) -> int | None:
            raise RuntimeError("offline")

    result = RiskAssessor(PolicyStore(), Broken()).assess(
        _req(SchemaChangeOperation(change_type="drop_table", table_name="scratch"))
    )
    assert result.risk_level == "low"
    assert result.estimated_impact.affected_records == 0


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("cancel_booking", [("business_logic", "warning")]),
        ("process_payment", [("compliance", "error")]),
        ("delete_refund", [("business_logic", "warning"), ("compliance", "error")]),
        ("rename_customer", []),
    ],
)
def test_business_operation_name_checks(name: str, expected: list[tuple[str, str]]) -> None:
    result = RiskAssessor(PolicyStore()).assess(
        _req(BusinessOperation(operation_type=name, affected_entities=["a", "b"]))
    )
    assert [(i.category, i.severity) for i in result.issues] == expected
    assert result.estimated_impact.affected_records == 2


def test_migration_is_high_and_checks_each_statement() -> None:
    result = RiskAssessor(PolicyStore()).assess(
        _req(
            MigrationOperation(
                name="backfill",
                statements=[
                    "UPDATE orders SET region = 'eu' WHERE region IS NULL",
                    "INSERT INTO order_regions (region) VALUES ('eu')",
                ],
            )
        )
    )
    # The first statement trips the UPDATE pattern heuristic.
    assert result.risk_level == "critical"

    clean = RiskAssessor(PolicyStore()).assess(
        _req(
            MigrationOperation(
                name="seed", statements=["INSERT INTO order_regions (region) VALUES ('eu')"]
            )
        )
    )
    assert clean.risk_level == "high"
    assert clean.requires_approval is True
    assert clean.estimated_impact.affected_tables == ["order_regions"]
    assert clean.estimated_impact.reversibility == "partially_reversible"


def test_policy_rules_map_actions_to_severity() -> None:
    store = PolicyStore(policies=[])
    store.add_policy(
        SafetyPolicy(
            id="no-ledger",
            name="Ledger",
            rules=[
                SafetyRule(
                    id="ledger-block",
                    type="table_access",
                    condition="ledger",
                    action="block",
                    message="Ledger is read via reports only",
                ),
                SafetyRule(
                    id="ledger-log",
                    type="sql_pattern",
                    condition=r"ledger\s+l",
                    action="log_only",
                    message="aliased ledger",
                ),
            ],
        )
    )
    result = RiskAssessor(store).assess(_req(QueryOperation(sql="SELECT id FROM ledger l LIMIT 1")))
    [issue] = result.issues
    assert (issue.category, issue.severity) == ("compliance", "critical")
    assert "Ledger" in issue.message


def test_default_drop_table_policy_requires_approval() -> None:
    result = RiskAssessor(PolicyStore()).assess(_req(QueryOperation(sql="DROP TABLE scratch")))
    assert [(i.category, i.severity) for i in result.issues] == [("security", "error")]
    assert result.risk_level == "high"
    assert result.estimated_impact.reversibility == "irreversible"


def test_inactive_policy_is_ignored() -> None:
    store = PolicyStore()
    for policy in store.list_policies():
        store.add_policy(policy.model_copy(update={"is_active": False}))
    result = RiskAssessor(store).assess(_req(QueryOperation(sql="DROP TABLE scratch")))
    assert result.issues == []


def test_row_counts_feed_affected_records() -> None:
    metadata = StaticSchemaMetadata(row_counts={"orders": 1200})
    result = RiskAssessor(PolicyStore(), metadata).assess(
        _req(QueryOperation(sql="DELETE FROM orders\nWHERE created_at < '2020-01-01'"))
    )
    assert result.estimated_impact.affected_records == 1200
    assert result.estimated_impact.reversibility == "partially_reversible"


def test_risk_level_is_max_severity() -> None:
    def issue(severity: Severity) -> ValidationIssue:
        return ValidationIssue(category="performance", severity=severity, message="m")

    assert derive_risk_level([]) == "low"
    assert derive_risk_level([issue("warning")]) == "medium"
    assert derive_risk_level([issue("warning"), issue("error")]) == "high"
    assert derive_risk_level([issue("critical"), issue("warning")]) == "critical"


def test_recommendations_follow_category_order() -> None:
    issues = [
        ValidationIssue(category="compliance", severity="warning", message="c"),
        ValidationIssue(category="security", severity="critical", message="s"),
        ValidationIssue(category="security", severity="critical", message="s2"),
    ]
    recs = build_recommendations(issues)
    assert recs[0] == "Review and sanitize all user inputs"
    assert recs[-1] == "Verify compliance with GDPR and other regulations"
    assert len(recs) == 4
