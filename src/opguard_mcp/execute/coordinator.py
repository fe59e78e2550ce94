"""Execution coordinator: the orchestrator and public API of the engine.

Accepts submissions, runs the risk assessor and rollback planner, applies the
approval gate, drives the status machine through execution and replays
compensating steps on failure or request.

Locking discipline:
- A single re-entrant lock guards the request and result maps
- Executor, audit sink and approval channel calls never run under it
- Status is re-checked after the lock is re-acquired to finalize
"""

from __future__ import annotations

import threading
import time
from typing import Any, assert_never

from fastmcp.utilities.logging import get_logger

from opguard_mcp.models import (
    ActionResult,
    Approval,
    ApprovalRequestEvent,
    AuditEntry,
    AuditEvent,
    BusinessOperation,
    ExecutionRequest,
    ExecutionResult,
    MigrationOperation,
    QueryOperation,
    RiskLevel,
    SchemaChangeOperation,
    Snapshot,
    StatusChange,
    new_id,
    utc_now,
)
from opguard_mcp.safety import PolicyStore, RiskAssessor, SchemaMetadata, SqlInspector

from .audit import ApprovalChannel, AuditSink, LoggingApprovalChannel
from .executor import Executor, ExecutorError
from .planner import RollbackPlanner
from .snapshots import SnapshotStore
from .state import ROLLBACK_SOURCE_STATES, IllegalTransitionError, is_terminal, transition

_logger = get_logger(__name__)

_AUTO_APPROVABLE_RISKS: frozenset[RiskLevel] = frozenset({"low", "medium"})


def approvals_sufficient(risk: RiskLevel, approvals: list[Approval]) -> bool:
    """Critical needs an admin approval; high needs any; lower needs none."""
    if risk == "critical":
        return any(a.approval_type == "admin" for a in approvals)
    if risk == "high":
        return bool(approvals)
    return True


def _history_key(result: ExecutionResult) -> tuple[bool, float]:
    if result.executed_at is None:
        return (False, 0.0)
    return (True, result.executed_at.timestamp())


def _error(code: str, message: str, execution_id: str | None = None) -> ActionResult:
    return ActionResult(status="error", code=code, message=message, execution_id=execution_id)


class ExecutionCoordinator:
    """Explicitly constructed, injectable safety gate around an `Executor`.

    Args:
        executor: Runs operations and compensating steps
        audit_sink: Receives every safety-relevant decision
        policy_store: Critical tables, dangerous patterns and policies
        metadata: Optional schema lookups (dependents, row counts)
        inspector: SQL parser for impact estimates; generic dialect by default
        approval_channel: Receives approval requests; logs them by default
        snapshot_store: Snapshot storage; a private store by default
        planner: Rollback planner; the stock planner by default
        auto_execute: Execute as soon as a request becomes approved
        history_limit: Default size of `get_execution_history`
    """

    def __init__(
        self,
        executor: Executor,
        audit_sink: AuditSink,
        policy_store: PolicyStore,
        *,
        metadata: SchemaMetadata | None = None,
        inspector: SqlInspector | None = None,
        approval_channel: ApprovalChannel | None = None,
        snapshot_store: SnapshotStore | None = None,
        planner: RollbackPlanner | None = None,
        auto_execute: bool = True,
        history_limit: int = 50,
    ) -> None:
        self.executor = executor
        self.audit_sink = audit_sink
        self.policy_store = policy_store
        self.assessor = RiskAssessor(policy_store, metadata, inspector)
        self.approval_channel = approval_channel or LoggingApprovalChannel()
        self.snapshot_store = snapshot_store or SnapshotStore()
        self.planner = planner or RollbackPlanner()
        self.auto_execute = auto_execute
        self.history_limit = max(1, history_limit)

        self._lock = threading.RLock()
        # Both maps are keyed by execution id; insertion order is submission order.
        self._requests: dict[str, ExecutionRequest] = {}
        self._results: dict[str, ExecutionResult] = {}
        self._execution_by_request: dict[str, str] = {}
        self._rollbacks_running: set[str] = set()

    # ---- public API: state transitions ----------------------------------
    def submit_execution(self, request: ExecutionRequest) -> ExecutionResult:
        """Assess, plan and register a request; auto-approve when policy allows.

        Re-submitting a request id that is already known returns the existing
        result unchanged.
        """
        with self._lock:
            existing = self._execution_by_request.get(request.id)
            if existing is not None:
                _logger.info("Request %s already submitted as %s", request.id, existing)
                return self._results[existing].model_copy(deep=True)

        validation = self.assessor.assess(request)
        plan = self.planner.plan(request)
        result = ExecutionResult(
            request_id=request.id,
            validation=validation,
            rollback_plan=plan,
            status_history=[StatusChange(status="pending")],
        )

        auto_approve = (
            validation.is_valid
            and not validation.requires_approval
            and request.priority != "critical"
            and validation.risk_level in _AUTO_APPROVABLE_RISKS
        )

        with self._lock:
            # Lost a race with a concurrent submit of the same request id
            existing = self._execution_by_request.get(request.id)
            if existing is not None:
                return self._results[existing].model_copy(deep=True)

            self._requests[result.id] = request
            self._results[result.id] = result
            self._execution_by_request[request.id] = result.id

            if auto_approve:
                approval_type = "system" if validation.risk_level == "low" else "automatic"
                result.approvals.append(
                    Approval(
                        approved_by="system",
                        approval_type=approval_type,
                        comments=f"Auto-approved: {validation.risk_level} risk",
                    )
                )
                transition(result, "approved")
                entry = self._entry("auto_approved", result, request, actor="system")
            else:
                entry = self._entry("approval_requested", result, request)
            execution_id = result.id

        _logger.info(
            "Submitted %s request %s as execution %s (risk=%s, auto_approved=%s)",
            request.kind,
            request.id,
            execution_id,
            validation.risk_level,
            auto_approve,
        )
        self._audit(entry)

        if not auto_approve:
            self._request_approval(
                ApprovalRequestEvent(
                    execution_id=execution_id,
                    request_type=request.kind,
                    risk_level=validation.risk_level,
                    requested_by=request.requested_by,
                    business_unit_id=request.context.business_unit_id,
                )
            )
        elif self.auto_execute:
            self.execute(execution_id)

        return self._copy(execution_id)

    def approve_execution(self, execution_id: str, approval: Approval) -> ActionResult:
        """Record an approval; execute once the approvals are sufficient."""
        with self._lock:
            result = self._results.get(execution_id)
            if result is None:
                return _error("not_found", f"Unknown execution: {execution_id}")
            if result.status != "pending":
                _logger.warning(
                    "Approval for %s rejected in status %s", execution_id, result.status
                )
                return _error(
                    "invalid_state",
                    f"Execution is {result.status}; approvals are accepted only while pending",
                    execution_id,
                )
            request = self._requests[execution_id]
            result.approvals.append(approval)
            sufficient = approvals_sufficient(result.validation.risk_level, result.approvals)
            if sufficient:
                transition(result, "approved")
            entry = self._entry(
                "approval_recorded",
                result,
                request,
                actor=approval.approved_by,
                reason=approval.comments,
            )

        _logger.info(
            "Approval (%s) by %s recorded for %s; sufficient=%s",
            approval.approval_type,
            approval.approved_by,
            execution_id,
            sufficient,
        )
        self._audit(entry)

        if not sufficient:
            return ActionResult(
                code="awaiting_approval",
                message="Approval recorded; more approvals are required",
                execution_id=execution_id,
            )
        if self.auto_execute:
            return self.execute(execution_id)
        return ActionResult(message="Execution approved", execution_id=execution_id)

    def execute(self, execution_id: str) -> ActionResult:
        """Run an approved execution exactly once."""
        with self._lock:
            result = self._results.get(execution_id)
            if result is None:
                return _error("not_found", f"Unknown execution: {execution_id}")
            if result.status != "approved":
                _logger.warning("Execute rejected for %s in status %s", execution_id, result.status)
                return _error(
                    "invalid_state",
                    f"Execution is {result.status}; only approved executions can run",
                    execution_id,
                )
            if not approvals_sufficient(result.validation.risk_level, result.approvals):
                return _error(
                    "insufficient_approvals",
                    f"{result.validation.risk_level} risk requires further approval",
                    execution_id,
                )
            request = self._requests[execution_id]
            transition(result, "executing")
            result.executed_at = utc_now()

        start = time.perf_counter()
        payload: dict[str, Any] | None = None
        error: str | None = None
        try:
            self.snapshot_store.capture(
                execution_id, "pre_execution", {"request": request.model_dump(mode="json")}
            )
            payload = self._dispatch(request)
        except ExecutorError as exc:
            error = str(exc)
        except Exception as exc:  # noqa: BLE001 - collaborators are injected; finalize as failed
            _logger.exception("Execution %s raised unexpectedly", execution_id)
            error = f"{type(exc).__name__}: {exc}"
        duration_ms = (time.perf_counter() - start) * 1000.0

        if error is None:
            try:
                self.snapshot_store.capture(execution_id, "post_execution", {"result": payload})
            except Exception:  # noqa: BLE001 - the operation already ran; it stays completed
                _logger.exception("Post-execution snapshot failed for %s", execution_id)

        with self._lock:
            if result.status != "executing":
                _logger.warning(
                    "Execution %s left executing state concurrently (%s)",
                    execution_id,
                    result.status,
                )
                return _error("invalid_state", "Execution state changed concurrently", execution_id)
            result.completed_at = utc_now()
            if error is None:
                result.result = payload
                transition(result, "completed")
                entry = self._entry(
                    "completed", result, request, duration_ms=duration_ms, result=payload
                )
            else:
                result.error = error
                transition(result, "failed")
                entry = self._entry("failed", result, request, duration_ms=duration_ms)
            plan = result.rollback_plan
            terminal = is_terminal(result)

        self._audit(entry)

        if error is None:
            _logger.info("Execution %s completed in %.1f ms", execution_id, duration_ms)
            return ActionResult(message="Execution completed", execution_id=execution_id)

        _logger.warning("Execution %s failed: %s", execution_id, error)
        if plan.can_rollback and plan.complexity != "impossible":
            rollback = self.rollback_execution(
                execution_id, reason=f"Automatic rollback after failure: {error}"
            )
            suffix = "rolled back" if rollback.ok else f"rollback failed: {rollback.message}"
            return _error("execution_failed", f"{error} ({suffix})", execution_id)
        if terminal:
            _logger.error(
                "Execution %s failed and cannot be rolled back; manual intervention required",
                execution_id,
            )
        return _error("execution_failed", error, execution_id)

    def rollback_execution(self, execution_id: str, reason: str) -> ActionResult:
        """Replay the rollback plan in reverse order through the executor."""
        with self._lock:
            result = self._results.get(execution_id)
            if result is None:
                return _error("not_found", f"Unknown execution: {execution_id}")
            if execution_id in self._rollbacks_running:
                return _error(
                    "rollback_in_progress", "A rollback is already running", execution_id
                )
            if result.status not in ROLLBACK_SOURCE_STATES:
                _logger.warning(
                    "Rollback rejected for %s in status %s", execution_id, result.status
                )
                return _error(
                    "invalid_state",
                    f"Execution is {result.status}; only completed or failed can roll back",
                    execution_id,
                )
            plan = result.rollback_plan
            if not plan.can_rollback:
                return _error(
                    "cannot_rollback",
                    f"Rollback plan is {plan.complexity}; rollback is not possible",
                    execution_id,
                )
            request = self._requests[execution_id]
            status_before = result.status
            self._rollbacks_running.add(execution_id)

        steps = list(reversed(plan.operations))
        _logger.info(
            "Rolling back %s (%d steps, plan=%s): %s", execution_id, len(steps), plan.id, reason
        )
        outcomes: list[dict[str, Any]] = []
        failure: str | None = None
        for step in steps:
            try:
                outcomes.append(self.executor.apply_compensation(step, request.context))
            except ExecutorError as exc:
                failure = f"Step {step.order} failed: {exc}"
                break
            except Exception as exc:  # noqa: BLE001 - executor is injected; report as failed
                _logger.exception("Compensating step %d raised for %s", step.order, execution_id)
                failure = f"Step {step.order} failed: {type(exc).__name__}: {exc}"
                break

        if failure is not None:
            done = [s.order for s in steps[: len(outcomes)]]
            remaining = [s.order for s in steps[len(outcomes) :]]
            with self._lock:
                result.rollback_error = failure
                self._rollbacks_running.discard(execution_id)
                entry = self._entry(
                    "rollback_failed",
                    result,
                    request,
                    reason=reason,
                    error=failure,
                    result={"completed_steps": done, "remaining_steps": remaining},
                )
            _logger.error("Rollback of %s failed: %s", execution_id, failure)
            self._audit(entry)
            return _error("rollback_failed", failure, execution_id)

        rollback_id = new_id()
        try:
            self.snapshot_store.capture(
                execution_id,
                "checkpoint",
                {
                    "rollback_id": rollback_id,
                    "reason": reason,
                    "status_before": status_before,
                    "steps": outcomes,
                },
            )
        except Exception:  # noqa: BLE001 - the steps already ran; finalize the rollback
            _logger.exception("Checkpoint snapshot failed for %s", execution_id)
        with self._lock:
            try:
                transition(result, "rolled_back")
            except IllegalTransitionError as exc:
                self._rollbacks_running.discard(execution_id)
                _logger.warning("Rollback of %s could not finalize: %s", execution_id, exc)
                return _error("invalid_state", str(exc), execution_id)
            result.rollback_id = rollback_id
            result.rollback_error = None
            self._rollbacks_running.discard(execution_id)
            entry = self._entry(
                "rollback_succeeded", result, request, reason=reason, rollback_id=rollback_id
            )

        _logger.info("Execution %s rolled back (rollback_id=%s)", execution_id, rollback_id)
        self._audit(entry)
        return ActionResult(message="Execution rolled back", execution_id=execution_id)

    # ---- public API: queries ----------------------------------------------
    def get_execution_status(self, execution_id: str) -> ExecutionResult | None:
        with self._lock:
            if execution_id not in self._results:
                return None
            return self._copy(execution_id)

    def get_pending_executions(self) -> list[ExecutionRequest]:
        """Requests still awaiting approval, in submission order."""
        with self._lock:
            return [
                self._requests[eid] for eid, res in self._results.items() if res.status == "pending"
            ]

    def get_execution_history(self, limit: int | None = None) -> list[ExecutionResult]:
        """Most recently executed first; never-executed results last."""
        n = self.history_limit if limit is None else max(0, limit)
        with self._lock:
            results = [r.model_copy(deep=True) for r in self._results.values()]
        # Stable under reverse=True, so never-executed results keep submission order.
        results.sort(key=_history_key, reverse=True)
        return results[:n]

    def get_snapshots(self, execution_id: str) -> list[Snapshot]:
        return self.snapshot_store.snapshots(execution_id)

    # ---- internal ------------------------------------------------------------
    def _copy(self, execution_id: str) -> ExecutionResult:
        with self._lock:
            return self._results[execution_id].model_copy(deep=True)

    def _dispatch(self, request: ExecutionRequest) -> dict[str, Any]:
        op = request.operation
        ctx = request.context
        if isinstance(op, QueryOperation):
            return self.executor.run_query(op.sql, ctx)
        if isinstance(op, SchemaChangeOperation):
            return self.executor.apply_schema_change(op, ctx)
        if isinstance(op, BusinessOperation):
            return self.executor.run_business_operation(op, ctx)
        if isinstance(op, MigrationOperation):
            return self.executor.run_migration(op, ctx)
        assert_never(op)

    @staticmethod
    def _entry(
        event: AuditEvent,
        result: ExecutionResult,
        request: ExecutionRequest,
        *,
        actor: str | None = None,
        **fields: Any,
    ) -> AuditEntry:
        return AuditEntry(
            event=event,
            execution_id=result.id,
            request_id=request.id,
            request_type=request.kind,
            status=result.status,
            actor=actor or request.requested_by,
            business_unit_id=request.context.business_unit_id,
            executed_at=result.executed_at,
            completed_at=result.completed_at,
            error=fields.pop("error", result.error),
            **fields,
        )

    def _audit(self, entry: AuditEntry) -> None:
        try:
            self.audit_sink.record(entry)
        except Exception:  # noqa: BLE001 - keep the trail in the log when the sink is down
            _logger.exception(
                "Audit sink rejected %s entry for %s: %s",
                entry.event,
                entry.execution_id,
                entry.model_dump_json(),
            )

    def _request_approval(self, event: ApprovalRequestEvent) -> None:
        try:
            self.approval_channel.request_approval(event)
        except Exception:  # noqa: BLE001 - request stays pending and visible
            _logger.exception("Approval channel rejected request for %s", event.execution_id)
