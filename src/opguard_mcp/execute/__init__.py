"""Execution package: status machine, rollback planning, snapshots, executors,
audit sinks and the coordinator that drives them.

Exports the coordinator, its collaborators and the FastMCP registration helper.
"""

from __future__ import annotations

from .audit import (
    ApprovalChannel,
    AuditSink,
    AuditWriteError,
    InMemoryApprovalChannel,
    InMemoryAuditSink,
    LoggingApprovalChannel,
    LoggingAuditSink,
    SqlAlchemyApprovalChannel,
    SqlAlchemyAuditSink,
)
from .coordinator import ExecutionCoordinator, approvals_sufficient
from .executor import Executor, ExecutorError, ExecutionLimits, SqlAlchemyExecutor
from .mcp_tools import register_execution_tools
from .planner import RollbackPlanner
from .snapshots import SnapshotStore
from .state import IllegalTransitionError, is_terminal

__all__ = [
    "ApprovalChannel",
    "AuditSink",
    "AuditWriteError",
    "ExecutionCoordinator",
    "ExecutionLimits",
    "Executor",
    "ExecutorError",
    "IllegalTransitionError",
    "InMemoryApprovalChannel",
    "InMemoryAuditSink",
    "LoggingApprovalChannel",
    "LoggingAuditSink",
    "RollbackPlanner",
    "SnapshotStore",
    "SqlAlchemyApprovalChannel",
    "SqlAlchemyAuditSink",
    "SqlAlchemyExecutor",
    "approvals_sufficient",
    "is_terminal",
    "register_execution_tools",
]
