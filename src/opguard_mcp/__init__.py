"""opguard-mcp package: a safety gate for AI-proposed database operations.

Assesses risk, gates execution on approval, captures snapshots and rolls
back on failure. Usable in-process through `ExecutionCoordinator` or as a
Model Context Protocol (FastMCP) server.
"""

from opguard_mcp.execute import (
    ExecutionCoordinator,
    Executor,
    ExecutorError,
    InMemoryAuditSink,
    LoggingAuditSink,
    RollbackPlanner,
    SnapshotStore,
    SqlAlchemyExecutor,
)
from opguard_mcp.models import (
    ActionResult,
    Approval,
    BusinessOperation,
    ExecutionContext,
    ExecutionRequest,
    ExecutionResult,
    MigrationOperation,
    QueryOperation,
    RollbackPlan,
    SchemaChangeOperation,
    ValidationResult,
)
from opguard_mcp.safety import PolicyStore, RiskAssessor

__all__ = [  # noqa: RUF022
    # Core models
    "ActionResult",
    "Approval",
    "BusinessOperation",
    "ExecutionContext",
    "ExecutionRequest",
    "ExecutionResult",
    "MigrationOperation",
    "QueryOperation",
    "RollbackPlan",
    "SchemaChangeOperation",
    "ValidationResult",
    # Components
    "ExecutionCoordinator",
    "Executor",
    "ExecutorError",
    "InMemoryAuditSink",
    "LoggingAuditSink",
    "PolicyStore",
    "RiskAssessor",
    "RollbackPlanner",
    "SnapshotStore",
    "SqlAlchemyExecutor",
]
