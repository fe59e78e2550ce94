from __future__ import annotations

import pytest

from opguard_mcp.execute.planner import (
    RESTORE_FROM_SNAPSHOT,
    TRANSACTION_ROLLBACK,
    RollbackPlanner,
    assess_complexity,
    estimate_minutes,
)
from opguard_mcp.models import (
    BusinessOperation,
    ExecutionContext,
    ExecutionRequest,
    MigrationOperation,
    Operation,
    QueryOperation,
    RollbackOperation,
    SchemaChangeOperation,
    StepRisk,
)


def _req(operation: Operation) -> ExecutionRequest:
    return ExecutionRequest(
        operation=operation,
        context=ExecutionContext(user_id="u", business_unit_id="bu"),
        requested_by="agent",
    )


def _step(order: int, risk: StepRisk = "low") -> RollbackOperation:
    return RollbackOperation(
        order=order, type="sql_rollback", operation="x", description="x", risk_level=risk
    )


def test_query_plan_is_single_transaction_placeholder() -> None:
    plan = RollbackPlanner().plan(_req(QueryOperation(sql="UPDATE t SET a = 1 WHERE id = 1")))
    assert plan.type == "sql_rollback"
    [step] = plan.operations
    assert step.operation == TRANSACTION_ROLLBACK
    assert step.executable is False
    assert plan.complexity == "simple"
    assert plan.can_rollback is True
    assert plan.estimated_minutes == 5


def test_schema_plan_uses_inverse_ddl_when_known() -> None:
    op = SchemaChangeOperation(
        change_type="create_table",
        table_name="scratch",
        ddl="CREATE TABLE scratch (id INTEGER)",
        inverse_ddl="DROP TABLE scratch",
    )
    [step] = RollbackPlanner().plan(_req(op)).operations
    assert step.operation == "DROP TABLE scratch"
    assert step.executable is True
    assert step.risk_level == "medium"


def test_schema_plan_without_inverse_is_descriptive() -> None:
    op = SchemaChangeOperation(change_type="drop_table", table_name="users")
    plan = RollbackPlanner().plan(_req(op))
    assert plan.type == "schema_rollback"
    assert plan.operations[0].operation == "REVERSE drop_table"
    assert plan.operations[0].executable is False


def test_business_plan_reverses_operation_type() -> None:
    plan = RollbackPlanner().plan(_req(BusinessOperation(operation_type="cancel_booking")))
    assert plan.type == "business_reversal"
    assert plan.operations[0].operation == "REVERSE cancel_booking"


def test_migration_plan_restores_snapshot_and_is_complex() -> None:
    plan = RollbackPlanner().plan(_req(MigrationOperation(name="m1", statements=["SELECT 1"])))
    assert plan.type == "data_restore"
    assert plan.operations[0].operation == RESTORE_FROM_SNAPSHOT
    assert plan.complexity == "complex"
    assert plan.can_rollback is True
    assert plan.estimated_minutes == 30


@pytest.mark.parametrize(
    ("steps", "expected"),
    [
        ([], "impossible"),
        ([_step(1)], "simple"),
        ([_step(1), _step(2), _step(3)], "simple"),
        ([_step(i) for i in range(1, 5)], "moderate"),
        ([_step(1), _step(2, "high")], "complex"),
        ([_step(i, "medium") for i in range(1, 6)], "moderate"),
    ],
)
def test_complexity_heuristic(steps: list[RollbackOperation], expected: str) -> None:
    assert assess_complexity(steps) == expected


def test_impossible_plan_cannot_roll_back() -> None:
    plan = RollbackPlanner.build_plan("sql_rollback", [])
    assert plan.complexity == "impossible"
    assert plan.can_rollback is False
    assert plan.estimated_minutes == 0


def test_build_plan_orders_steps_and_estimates_minutes() -> None:
    plan = RollbackPlanner.build_plan("sql_rollback", [_step(3), _step(1), _step(2)])
    assert [s.order for s in plan.operations] == [1, 2, 3]
    assert plan.estimated_minutes == estimate_minutes(plan.operations, "simple") == 15
