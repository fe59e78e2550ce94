"""Pydantic models for the operation safety engine.

Covers the request side (operations, context, requests), the assessment side
(issues, impact, validation results), rollback plans, approvals, execution
results, snapshots and the audit/approval records handed to external sinks.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

OperationKind = Literal["query", "schema_change", "business_operation", "migration"]
Priority = Literal["low", "medium", "high", "critical"]
IssueCategory = Literal["security", "data_loss", "performance", "compliance", "business_logic"]
Severity = Literal["warning", "error", "critical"]
RiskLevel = Literal["low", "medium", "high", "critical"]
Reversibility = Literal["reversible", "partially_reversible", "irreversible"]
SchemaChangeType = Literal[
    "create_table", "alter_table", "drop_table", "create_index", "drop_index"
]
RollbackType = Literal["sql_rollback", "schema_rollback", "data_restore", "business_reversal"]
RollbackComplexity = Literal["simple", "moderate", "complex", "impossible"]
StepRisk = Literal["low", "medium", "high"]
ApprovalType = Literal["automatic", "user", "admin", "system"]
ExecutionStatus = Literal["pending", "approved", "executing", "completed", "failed", "rolled_back"]
SnapshotTag = Literal["pre_execution", "post_execution", "checkpoint"]
AuditEvent = Literal[
    "auto_approved",
    "approval_requested",
    "approval_recorded",
    "completed",
    "failed",
    "rollback_succeeded",
    "rollback_failed",
]


def utc_now() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return uuid4().hex


# -----------------------
# Request side
# -----------------------


class ExecutionContext(BaseModel):
    """Who asked for the operation and why."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(description="Acting user identifier")
    business_unit_id: str = Field(description="Tenant / business-unit identifier")
    session_id: str | None = Field(default=None, description="Caller session, when known")
    user_intent: str = Field(default="", description="Caller-declared intent")
    ai_confidence: float = Field(
        default=1.0, ge=0.0, le=1.0, description="Upstream classifier confidence"
    )
    related_tables: list[str] = Field(default_factory=list)
    expected_outcome: str = Field(default="")


class QueryOperation(BaseModel):
    """A raw SQL statement."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["query"] = "query"
    sql: str = Field(description="SQL text to run")


class SchemaChangeOperation(BaseModel):
    """A structural change to a single table or index."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["schema_change"] = "schema_change"
    change_type: SchemaChangeType
    table_name: str
    ddl: str | None = Field(default=None, description="DDL to run; generated for drops if absent")
    inverse_ddl: str | None = Field(
        default=None, description="DDL that undoes the change, when the caller knows it"
    )
    details: dict[str, Any] = Field(default_factory=dict)


class BusinessOperation(BaseModel):
    """A named business-state mutation carried out by a registered handler."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["business_operation"] = "business_operation"
    operation_type: str = Field(description="Operation name, e.g. 'cancel_booking'")
    description: str = ""
    affected_entities: list[str] = Field(default_factory=list)
    parameters: dict[str, Any] = Field(default_factory=dict)


class MigrationOperation(BaseModel):
    """An ordered batch of statements applied as one data migration."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["migration"] = "migration"
    name: str
    statements: list[str] = Field(default_factory=list)
    description: str = ""


Operation = Annotated[
    QueryOperation | SchemaChangeOperation | BusinessOperation | MigrationOperation,
    Field(discriminator="kind"),
]


class ExecutionRequest(BaseModel):
    """A proposed operation submitted for safety review. Immutable."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id, description="Request id; also the idempotency key")
    operation: Operation
    context: ExecutionContext
    priority: Priority = "medium"
    requested_by: str = Field(description="Identity of the submitting caller")
    requested_at: datetime = Field(default_factory=utc_now)

    @property
    def kind(self) -> OperationKind:
        return self.operation.kind


# -----------------------
# Assessment side
# -----------------------


class ValidationIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: IssueCategory
    severity: Severity
    message: str
    affected_tables: list[str] | None = None
    suggested_fix: str | None = None


class ImpactAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    affected_records: int = 0
    affected_tables: list[str] = Field(default_factory=list)
    business_processes: list[str] = Field(default_factory=list)
    reversibility: Reversibility = "reversible"
    estimated_downtime_minutes: int = 0
    data_integrity_risk: int = Field(default=0, ge=0, le=100)


class ValidationResult(BaseModel):
    """Outcome of a risk assessment, produced once per request."""

    model_config = ConfigDict(frozen=True)

    is_valid: bool
    risk_level: RiskLevel
    issues: list[ValidationIssue] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    requires_approval: bool
    estimated_impact: ImpactAssessment


# -----------------------
# Rollback, approvals, results
# -----------------------


class RollbackOperation(BaseModel):
    model_config = ConfigDict(frozen=True)

    order: int
    type: RollbackType
    operation: str = Field(description="SQL when executable, otherwise a placeholder instruction")
    description: str
    risk_level: StepRisk
    executable: bool = False


class RollbackPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    type: RollbackType
    operations: list[RollbackOperation] = Field(default_factory=list)
    can_rollback: bool
    complexity: RollbackComplexity
    estimated_minutes: int


class Approval(BaseModel):
    model_config = ConfigDict(frozen=True)

    approved_by: str
    approval_type: ApprovalType
    approved_at: datetime = Field(default_factory=utc_now)
    comments: str | None = None


class StatusChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: ExecutionStatus
    at: datetime = Field(default_factory=utc_now)


class ExecutionResult(BaseModel):
    """Lifecycle record of one request; callers only ever see copies."""

    id: str = Field(default_factory=new_id, description="Execution id")
    request_id: str
    status: ExecutionStatus = "pending"
    validation: ValidationResult
    approvals: list[Approval] = Field(default_factory=list)
    rollback_plan: RollbackPlan
    executed_at: datetime | None = None
    completed_at: datetime | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    rollback_id: str | None = None
    rollback_error: str | None = None
    status_history: list[StatusChange] = Field(default_factory=list)


class Snapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    execution_id: str
    tag: SnapshotTag
    taken_at: datetime = Field(default_factory=utc_now)
    payload: dict[str, Any]
    size_bytes: int
    checksum: str


# -----------------------
# Outbound records
# -----------------------


class ApprovalRequestEvent(BaseModel):
    """Emitted when an execution needs a human decision."""

    model_config = ConfigDict(frozen=True)

    execution_id: str
    request_type: OperationKind
    risk_level: RiskLevel
    requested_by: str
    business_unit_id: str
    requested_at: datetime = Field(default_factory=utc_now)


class AuditEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    event: AuditEvent
    execution_id: str
    request_id: str
    request_type: OperationKind
    status: ExecutionStatus
    actor: str
    business_unit_id: str
    executed_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: float | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    reason: str | None = None
    rollback_id: str | None = None
    recorded_at: datetime = Field(default_factory=utc_now)


class ActionResult(BaseModel):
    """Outcome of a state-transition call on the public API."""

    status: Literal["ok", "error"] = Field(default="ok")
    code: str = Field(default="ok", description="Machine-readable outcome code")
    message: str = ""
    execution_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"
