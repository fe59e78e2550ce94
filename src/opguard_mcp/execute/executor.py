"""Executors: the only components that touch the data store.

This module provides the `Executor` protocol consumed by the coordinator and
a SQLAlchemy-backed implementation that:
- Runs each query, schema change and migration inside its own transaction
- Bounds returned rows and cell sizes
- Dispatches business operations to handlers registered by name
- Replays executable compensating steps and acknowledges placeholders
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
import threading
import time
from typing import Any, Protocol

from fastmcp.utilities.logging import get_logger
import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from opguard_mcp.models import (
    BusinessOperation,
    ExecutionContext,
    MigrationOperation,
    RollbackOperation,
    SchemaChangeOperation,
)

_logger = get_logger(__name__)

BusinessHandler = Callable[[BusinessOperation, ExecutionContext], dict[str, Any]]


class ExecutorError(Exception):
    """Raised by executors when an operation or compensating step fails."""


class Executor(Protocol):
    """Out-of-process capability the coordinator drives. Calls may block."""

    def run_query(self, sql: str, context: ExecutionContext) -> dict[str, Any]: ...

    def apply_schema_change(
        self, operation: SchemaChangeOperation, context: ExecutionContext
    ) -> dict[str, Any]: ...

    def run_business_operation(
        self, operation: BusinessOperation, context: ExecutionContext
    ) -> dict[str, Any]: ...

    def run_migration(
        self, operation: MigrationOperation, context: ExecutionContext
    ) -> dict[str, Any]: ...

    def apply_compensation(
        self, step: RollbackOperation, context: ExecutionContext
    ) -> dict[str, Any]: ...


def strip_trailing_semicolon(sql: str) -> str:
    s = sql.strip()
    return s.removesuffix(";")


def _truncate_value(val: object, max_chars: int) -> str | int | float | bool | None:
    """Truncate a single cell value to a safe representation."""
    if val is None:
        return None
    if isinstance(val, int | float | bool):
        return val
    s = str(val)
    if len(s) > max_chars:
        return s[: max_chars - 1] + "…"
    return s


def _truncate_rows(
    rows: Iterable[sa.RowMapping],
    columns: list[str],
    max_rows: int,
    max_chars: int,
) -> list[dict[str, str | int | float | bool | None]]:
    """Convert rows to JSON-safe dicts with truncation and row limit."""
    out: list[dict[str, str | int | float | bool | None]] = []
    for i, row in enumerate(rows):
        if i >= max_rows:
            break
        out.append({col: _truncate_value(row[col], max_chars) for col in columns})
    return out


@dataclass(slots=True)
class ExecutionLimits:
    """Bounds on rows and cell size returned from queries."""

    row_limit: int = 200
    max_cell_chars: int = 200


class SqlAlchemyExecutor:
    """Executor running operations against a SQLAlchemy engine."""

    def __init__(self, engine: sa.Engine, limits: ExecutionLimits | None = None) -> None:
        self.engine = engine
        self.limits = limits or ExecutionLimits()
        self._handlers: dict[str, BusinessHandler] = {}
        self._handlers_lock = threading.Lock()

    def register_business_handler(self, operation_type: str, handler: BusinessHandler) -> None:
        """Register the callable that carries out a named business operation.

        Registering ``reverse_<operation_type>`` makes the business reversal
        step of that operation executable.
        """
        with self._handlers_lock:
            self._handlers[operation_type] = handler

    def _handler(self, operation_type: str) -> BusinessHandler | None:
        with self._handlers_lock:
            return self._handlers.get(operation_type)

    # ---- Executor protocol ----------------------------------------------
    def run_query(self, sql: str, context: ExecutionContext) -> dict[str, Any]:
        sql_to_run = strip_trailing_semicolon(sql)
        _logger.info(
            "Running query for user=%s unit=%s: %s",
            context.user_id,
            context.business_unit_id,
            sql_to_run[:200],
        )
        start = time.perf_counter()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(sa.text(sql_to_run))
                if result.returns_rows:
                    cols = list(result.keys())
                    # sentinel row to detect truncation
                    raw_rows = result.mappings().fetchmany(self.limits.row_limit + 1)
                    rows = _truncate_rows(
                        raw_rows, cols, self.limits.row_limit, self.limits.max_cell_chars
                    )
                    payload: dict[str, Any] = {
                        "rows": rows,
                        "rows_returned": len(rows),
                        "truncated": len(raw_rows) > self.limits.row_limit,
                    }
                else:
                    payload = {"rows_affected": result.rowcount}
        except SQLAlchemyError as exc:
            _logger.warning("Query failed: %s", exc)
            raise ExecutorError(str(exc)) from exc
        payload["elapsed_ms"] = (time.perf_counter() - start) * 1000.0
        return payload

    def apply_schema_change(
        self, operation: SchemaChangeOperation, context: ExecutionContext
    ) -> dict[str, Any]:
        ddl = operation.ddl or self._generated_ddl(operation)
        _logger.info(
            "Applying schema change %s on %s for unit=%s",
            operation.change_type,
            operation.table_name,
            context.business_unit_id,
        )
        self._run_in_transaction([ddl])
        return {"change_type": operation.change_type, "table": operation.table_name, "ddl": ddl}

    def run_business_operation(
        self, operation: BusinessOperation, context: ExecutionContext
    ) -> dict[str, Any]:
        handler = self._handler(operation.operation_type)
        if handler is None:
            msg = f"No handler registered for business operation: {operation.operation_type}"
            raise ExecutorError(msg)
        _logger.info("Running business operation %s", operation.operation_type)
        try:
            return handler(operation, context)
        except SQLAlchemyError as exc:
            raise ExecutorError(str(exc)) from exc

    def run_migration(
        self, operation: MigrationOperation, context: ExecutionContext
    ) -> dict[str, Any]:
        if not operation.statements:
            msg = f"Migration {operation.name} has no statements"
            raise ExecutorError(msg)
        _logger.info(
            "Running migration %s (%d statements) for unit=%s",
            operation.name,
            len(operation.statements),
            context.business_unit_id,
        )
        affected = self._run_in_transaction(operation.statements)
        return {
            "migration": operation.name,
            "statements": len(operation.statements),
            "rows_affected": affected,
        }

    def apply_compensation(
        self, step: RollbackOperation, context: ExecutionContext
    ) -> dict[str, Any]:
        if step.executable:
            _logger.info("Compensating step %d: %s", step.order, step.description)
            self._run_in_transaction([step.operation])
            return {"step": step.order, "applied": True}

        if step.type == "business_reversal":
            reverse_name = "reverse_" + step.operation.removeprefix("REVERSE ").strip()
            handler = self._handler(reverse_name)
            if handler is not None:
                operation = BusinessOperation(
                    operation_type=reverse_name, description=step.description
                )
                try:
                    outcome = handler(operation, context)
                except SQLAlchemyError as exc:
                    raise ExecutorError(str(exc)) from exc
                return {"step": step.order, "applied": True, "result": outcome}

        # Placeholder steps carry no SQL; the failed operation's own
        # transaction was already rolled back by the engine.
        _logger.info("Compensating step %d acknowledged (no-op): %s", step.order, step.operation)
        return {"step": step.order, "applied": False}

    # ---- helpers ---------------------------------------------------------
    def _run_in_transaction(self, statements: list[str]) -> int:
        affected = 0
        try:
            with self.engine.begin() as conn:
                for statement in statements:
                    result = conn.execute(sa.text(strip_trailing_semicolon(statement)))
                    if result.rowcount and result.rowcount > 0:
                        affected += result.rowcount
        except SQLAlchemyError as exc:
            _logger.warning("Transaction failed and was rolled back: %s", exc)
            raise ExecutorError(str(exc)) from exc
        return affected

    def _generated_ddl(self, operation: SchemaChangeOperation) -> str:
        preparer = self.engine.dialect.identifier_preparer
        if operation.change_type == "drop_table":
            return f"DROP TABLE {preparer.quote(operation.table_name)}"
        if operation.change_type == "drop_index":
            index = operation.details.get("index_name")
            if not index:
                msg = "drop_index requires details.index_name when no DDL is given"
                raise ExecutorError(msg)
            return f"DROP INDEX {preparer.quote(str(index))}"
        msg = f"{operation.change_type} on {operation.table_name} requires explicit DDL"
        raise ExecutorError(msg)
