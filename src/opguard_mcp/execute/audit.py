"""Audit sinks and approval channels.

Both are outbound, append-only contracts supplied to the coordinator:
- AuditSink receives an `AuditEntry` for every safety-relevant decision
- ApprovalChannel receives an `ApprovalRequestEvent` when a human must decide

Logging, in-memory and SQLAlchemy-table implementations are provided.
"""

from __future__ import annotations

import threading
from typing import Protocol

from fastmcp.utilities.logging import get_logger
from pydantic_core import to_jsonable_python
import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from opguard_mcp.models import ApprovalRequestEvent, AuditEntry

_logger = get_logger(__name__)

_ROLLBACK_EVENTS = frozenset({"rollback_succeeded", "rollback_failed"})


class AuditSink(Protocol):
    def record(self, entry: AuditEntry) -> None: ...


class ApprovalChannel(Protocol):
    def request_approval(self, event: ApprovalRequestEvent) -> None: ...


class AuditWriteError(Exception):
    """Raised when an audit entry cannot be persisted."""


# ---- logging -------------------------------------------------------------
class LoggingAuditSink:
    """Writes audit entries to the module logger."""

    def record(self, entry: AuditEntry) -> None:
        log = _logger.warning if entry.event in {"failed", "rollback_failed"} else _logger.info
        log(
            "AUDIT %s execution=%s request=%s type=%s status=%s actor=%s unit=%s error=%s",
            entry.event,
            entry.execution_id,
            entry.request_id,
            entry.request_type,
            entry.status,
            entry.actor,
            entry.business_unit_id,
            entry.error,
        )


class LoggingApprovalChannel:
    def request_approval(self, event: ApprovalRequestEvent) -> None:
        _logger.info(
            "Approval requested for execution %s (type=%s, risk=%s, by=%s, unit=%s)",
            event.execution_id,
            event.request_type,
            event.risk_level,
            event.requested_by,
            event.business_unit_id,
        )


# ---- in-memory -----------------------------------------------------------
class InMemoryAuditSink:
    """Keeps entries in arrival order; useful for tests and embedding."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: list[AuditEntry] = []

    def record(self, entry: AuditEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def entries(self, execution_id: str | None = None) -> list[AuditEntry]:
        with self._lock:
            if execution_id is None:
                return list(self._entries)
            return [e for e in self._entries if e.execution_id == execution_id]


class InMemoryApprovalChannel:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[ApprovalRequestEvent] = []

    def request_approval(self, event: ApprovalRequestEvent) -> None:
        with self._lock:
            self._events.append(event)

    def events(self) -> list[ApprovalRequestEvent]:
        with self._lock:
            return list(self._events)


# ---- SQLAlchemy tables -----------------------------------------------------
audit_metadata = sa.MetaData()

execution_log = sa.Table(
    "ai_execution_log",
    audit_metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("event", sa.String(64), nullable=False),
    sa.Column("execution_id", sa.String(64), nullable=False, index=True),
    sa.Column("request_id", sa.String(64), nullable=False),
    sa.Column("type", sa.String(32), nullable=False),
    sa.Column("status", sa.String(32), nullable=False),
    sa.Column("executed_by", sa.String(255), nullable=False),
    sa.Column("business_unit_id", sa.String(255), nullable=False),
    sa.Column("executed_at", sa.DateTime(timezone=True)),
    sa.Column("completed_at", sa.DateTime(timezone=True)),
    sa.Column("execution_time_ms", sa.Float),
    sa.Column("result", sa.JSON),
    sa.Column("error", sa.Text),
    sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
)

rollback_log = sa.Table(
    "ai_rollback_log",
    audit_metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("event", sa.String(64), nullable=False),
    sa.Column("execution_id", sa.String(64), nullable=False, index=True),
    sa.Column("rollback_id", sa.String(64)),
    sa.Column("request_id", sa.String(64), nullable=False),
    sa.Column("type", sa.String(32), nullable=False),
    sa.Column("status", sa.String(32), nullable=False),
    sa.Column("executed_by", sa.String(255), nullable=False),
    sa.Column("business_unit_id", sa.String(255), nullable=False),
    sa.Column("executed_at", sa.DateTime(timezone=True)),
    sa.Column("completed_at", sa.DateTime(timezone=True)),
    sa.Column("reason", sa.Text),
    sa.Column("result", sa.JSON),
    sa.Column("error", sa.Text),
    sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
)

approval_requests = sa.Table(
    "ai_approval_requests",
    audit_metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("execution_id", sa.String(64), nullable=False, index=True),
    sa.Column("request_type", sa.String(32), nullable=False),
    sa.Column("risk_level", sa.String(16), nullable=False),
    sa.Column("requested_by", sa.String(255), nullable=False),
    sa.Column("business_unit_id", sa.String(255), nullable=False),
    sa.Column("status", sa.String(16), nullable=False, default="pending"),
    sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
)


class SqlAlchemyAuditSink:
    """Persists audit entries to `ai_execution_log` / `ai_rollback_log`.

    Tables are created on construction when missing. Write failures raise
    `AuditWriteError`; the audit trail is never silently dropped.
    """

    def __init__(self, engine: sa.Engine) -> None:
        self.engine = engine
        audit_metadata.create_all(engine, tables=[execution_log, rollback_log], checkfirst=True)

    def record(self, entry: AuditEntry) -> None:
        row = {
            "event": entry.event,
            "execution_id": entry.execution_id,
            "request_id": entry.request_id,
            "type": entry.request_type,
            "status": entry.status,
            "executed_by": entry.actor,
            "business_unit_id": entry.business_unit_id,
            "executed_at": entry.executed_at,
            "completed_at": entry.completed_at,
            "result": to_jsonable_python(entry.result, fallback=str),
            "error": entry.error,
            "recorded_at": entry.recorded_at,
        }
        if entry.event in _ROLLBACK_EVENTS:
            stmt = rollback_log.insert().values(
                rollback_id=entry.rollback_id, reason=entry.reason, **row
            )
        else:
            stmt = execution_log.insert().values(execution_time_ms=entry.duration_ms, **row)
        try:
            with self.engine.begin() as conn:
                conn.execute(stmt)
        except SQLAlchemyError as exc:
            _logger.exception("Audit write failed for execution %s", entry.execution_id)
            msg = f"Audit write failed: {exc}"
            raise AuditWriteError(msg) from exc


class SqlAlchemyApprovalChannel:
    """Queues approval requests in `ai_approval_requests` for an external workflow."""

    def __init__(self, engine: sa.Engine) -> None:
        self.engine = engine
        audit_metadata.create_all(engine, tables=[approval_requests], checkfirst=True)

    def request_approval(self, event: ApprovalRequestEvent) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    approval_requests.insert().values(
                        execution_id=event.execution_id,
                        request_type=event.request_type,
                        risk_level=event.risk_level,
                        requested_by=event.requested_by,
                        business_unit_id=event.business_unit_id,
                        status="pending",
                        requested_at=event.requested_at,
                    )
                )
        except SQLAlchemyError as exc:
            _logger.exception("Approval request write failed for %s", event.execution_id)
            msg = f"Approval request write failed: {exc}"
            raise AuditWriteError(msg) from exc
