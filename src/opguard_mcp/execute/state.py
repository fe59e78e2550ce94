"""Execution status machine.

Internal module defining the legal status transitions for an
`ExecutionResult`. The coordinator is the only caller.
"""

from __future__ import annotations

from typing import Final

from opguard_mcp.models import ExecutionResult, ExecutionStatus, StatusChange, utc_now

LEGAL_TRANSITIONS: Final[dict[ExecutionStatus, frozenset[ExecutionStatus]]] = {
    "pending": frozenset({"approved"}),
    "approved": frozenset({"executing"}),
    "executing": frozenset({"completed", "failed"}),
    "completed": frozenset({"rolled_back"}),
    "failed": frozenset({"rolled_back"}),
    "rolled_back": frozenset(),
}

# Convenience constants for call sites
ROLLBACK_SOURCE_STATES: Final[frozenset[ExecutionStatus]] = frozenset({"completed", "failed"})


class IllegalTransitionError(Exception):
    """Raised when a status change is not in `LEGAL_TRANSITIONS`."""

    def __init__(self, current: ExecutionStatus, target: ExecutionStatus) -> None:
        super().__init__(f"Illegal status transition {current} -> {target}")
        self.current = current
        self.target = target


def is_terminal(result: ExecutionResult) -> bool:
    """Completed and rolled-back are terminal; failed is terminal when it cannot roll back."""
    if result.status in {"completed", "rolled_back"}:
        return True
    return result.status == "failed" and not result.rollback_plan.can_rollback


def transition(result: ExecutionResult, target: ExecutionStatus) -> None:
    """Move `result` to `target`, recording the change in its history."""
    if target not in LEGAL_TRANSITIONS[result.status]:
        raise IllegalTransitionError(result.status, target)
    if target == "rolled_back" and not result.rollback_plan.can_rollback:
        raise IllegalTransitionError(result.status, target)
    result.status = target
    result.status_history.append(StatusChange(status=target, at=utc_now()))
