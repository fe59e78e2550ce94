"""Rollback planning.

Builds the compensating steps for a request before any approval decision is
made, and rates how hard they would be to carry out.
"""

from __future__ import annotations

from typing import Final, assert_never

from opguard_mcp.models import (
    BusinessOperation,
    ExecutionRequest,
    MigrationOperation,
    QueryOperation,
    RollbackComplexity,
    RollbackOperation,
    RollbackPlan,
    RollbackType,
    SchemaChangeOperation,
)

TRANSACTION_ROLLBACK: Final[str] = "ROLLBACK TRANSACTION"
RESTORE_FROM_SNAPSHOT: Final[str] = "RESTORE FROM SNAPSHOT"

BASE_MINUTES: Final[int] = 5
MINUTES_PER_EXTRA_STEP: Final[int] = 5
COMPLEX_MINUTES: Final[int] = 30
MODERATE_STEP_THRESHOLD: Final[int] = 3


def assess_complexity(operations: list[RollbackOperation]) -> RollbackComplexity:
    if not operations:
        return "impossible"
    if any(op.risk_level == "high" for op in operations):
        return "complex"
    if len(operations) > MODERATE_STEP_THRESHOLD:
        return "moderate"
    return "simple"


def estimate_minutes(operations: list[RollbackOperation], complexity: RollbackComplexity) -> int:
    if complexity == "impossible":
        return 0
    if complexity == "complex":
        return COMPLEX_MINUTES
    return BASE_MINUTES + MINUTES_PER_EXTRA_STEP * (len(operations) - 1)


class RollbackPlanner:
    """Produces one `RollbackPlan` per request."""

    def plan(self, request: ExecutionRequest) -> RollbackPlan:
        plan_type, operations = self._steps_for(request)
        return self.build_plan(plan_type, operations)

    @staticmethod
    def build_plan(plan_type: RollbackType, operations: list[RollbackOperation]) -> RollbackPlan:
        ordered = sorted(operations, key=lambda op: op.order)
        complexity = assess_complexity(ordered)
        return RollbackPlan(
            type=plan_type,
            operations=ordered,
            can_rollback=complexity != "impossible",
            complexity=complexity,
            estimated_minutes=estimate_minutes(ordered, complexity),
        )

    def _steps_for(
        self, request: ExecutionRequest
    ) -> tuple[RollbackType, list[RollbackOperation]]:
        op = request.operation
        if isinstance(op, QueryOperation):
            # Compensating SQL is not synthesized from the statement; the
            # step relies on the executor's transaction boundary.
            return "sql_rollback", [
                RollbackOperation(
                    order=1,
                    type="sql_rollback",
                    operation=TRANSACTION_ROLLBACK,
                    description="Rollback SQL transaction",
                    risk_level="low",
                )
            ]
        if isinstance(op, SchemaChangeOperation):
            if op.inverse_ddl:
                step = RollbackOperation(
                    order=1,
                    type="schema_rollback",
                    operation=op.inverse_ddl,
                    description=f"Apply inverse DDL for {op.change_type} on {op.table_name}",
                    risk_level="medium",
                    executable=True,
                )
            else:
                step = RollbackOperation(
                    order=1,
                    type="schema_rollback",
                    operation=f"REVERSE {op.change_type}",
                    description=f"Reverse {op.change_type} operation",
                    risk_level="medium",
                )
            return "schema_rollback", [step]
        if isinstance(op, BusinessOperation):
            return "business_reversal", [
                RollbackOperation(
                    order=1,
                    type="business_reversal",
                    operation=f"REVERSE {op.operation_type}",
                    description=f"Reverse {op.operation_type} business operation",
                    risk_level="medium",
                )
            ]
        if isinstance(op, MigrationOperation):
            return "data_restore", [
                RollbackOperation(
                    order=1,
                    type="data_restore",
                    operation=RESTORE_FROM_SNAPSHOT,
                    description="Restore data from pre-migration snapshot",
                    risk_level="high",
                )
            ]
        assert_never(op)
