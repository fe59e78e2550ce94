from __future__ import annotations

from typing import Any

import pytest
import sqlalchemy as sa
from sqlalchemy import text

from opguard_mcp.execute.executor import (
    ExecutionLimits,
    ExecutorError,
    SqlAlchemyExecutor,
    strip_trailing_semicolon,
)
from opguard_mcp.models import (
    BusinessOperation,
    ExecutionContext,
    MigrationOperation,
    RollbackOperation,
    SchemaChangeOperation,
)


def _mk_engine() -> sa.Engine:
    return sa.create_engine("sqlite+pysqlite:///:memory:")


def _setup_sqlite(engine: sa.Engine) -> None:
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE t(id INTEGER PRIMARY KEY, name TEXT)"))
        conn.execute(text("INSERT INTO t(name) VALUES ('Alice'),('Bob'),('Charlie')"))


def _count(engine: sa.Engine) -> int:
    with engine.connect() as conn:
        return int(conn.execute(text("SELECT COUNT(*) FROM t")).scalar_one())


def _ctx() -> ExecutionContext:
    return ExecutionContext(user_id="u", business_unit_id="bu")


def test_strip_semicolon() -> None:
    assert strip_trailing_semicolon("select 1;") == "select 1"
    assert strip_trailing_semicolon("  select 1  ") == "select 1"


def test_run_query_select_truncates_rows_and_cells() -> None:
    engine = _mk_engine()
    _setup_sqlite(engine)
    ex = SqlAlchemyExecutor(engine, ExecutionLimits(row_limit=2, max_cell_chars=5))

    out = ex.run_query("SELECT id, name FROM t ORDER BY id;", _ctx())

    assert out["rows_returned"] == 2
    assert out["truncated"] is True
    assert out["rows"][0] == {"id": 1, "name": "Alice"}
    assert out["rows"][1]["name"] == "Bob"
    assert out["elapsed_ms"] >= 0

    wide = SqlAlchemyExecutor(engine, ExecutionLimits(row_limit=10, max_cell_chars=5))
    rows = wide.run_query("SELECT name FROM t WHERE id = 3", _ctx())["rows"]
    assert rows == [{"name": "Char…"}]


def test_run_query_dml_reports_rows_affected() -> None:
    engine = _mk_engine()
    _setup_sqlite(engine)
    ex = SqlAlchemyExecutor(engine)

    out = ex.run_query("UPDATE t SET name = 'Bobby' WHERE id = 2", _ctx())

    assert out["rows_affected"] == 1
    assert "rows" not in out


def test_run_query_error_is_wrapped() -> None:
    ex = SqlAlchemyExecutor(_mk_engine())
    with pytest.raises(ExecutorError):
        ex.run_query("SELECT * FROM no_such_table", _ctx())


def test_schema_change_generates_drop_ddl() -> None:
    engine = _mk_engine()
    _setup_sqlite(engine)
    ex = SqlAlchemyExecutor(engine)

    out = ex.apply_schema_change(
        SchemaChangeOperation(change_type="drop_table", table_name="t"), _ctx()
    )

    assert out["ddl"] == "DROP TABLE t"
    assert not sa.inspect(engine).has_table("t")


def test_schema_change_without_ddl_is_rejected() -> None:
    ex = SqlAlchemyExecutor(_mk_engine())
    with pytest.raises(ExecutorError, match="requires explicit DDL"):
        ex.apply_schema_change(
            SchemaChangeOperation(change_type="create_table", table_name="x"), _ctx()
        )
    with pytest.raises(ExecutorError, match="index_name"):
        ex.apply_schema_change(
            SchemaChangeOperation(change_type="drop_index", table_name="x"), _ctx()
        )


def test_migration_is_all_or_nothing() -> None:
    engine = _mk_engine()
    _setup_sqlite(engine)
    ex = SqlAlchemyExecutor(engine)

    with pytest.raises(ExecutorError):
        ex.run_migration(
            MigrationOperation(
                name="broken",
                statements=["INSERT INTO t(name) VALUES ('Dan')", "INSERT INTO missing VALUES (1)"],
            ),
            _ctx(),
        )
    assert _count(engine) == 3

    out = ex.run_migration(
        MigrationOperation(
            name="ok",
            statements=["INSERT INTO t(name) VALUES ('Dan')", "DELETE FROM t WHERE id = 1"],
        ),
        _ctx(),
    )
    assert out == {"migration": "ok", "statements": 2, "rows_affected": 2}
    assert _count(engine) == 3


def test_empty_migration_is_rejected() -> None:
    ex = SqlAlchemyExecutor(_mk_engine())
    with pytest.raises(ExecutorError, match="no statements"):
        ex.run_migration(MigrationOperation(name="empty"), _ctx())


def test_business_operations_dispatch_to_registered_handlers() -> None:
    ex = SqlAlchemyExecutor(_mk_engine())
    seen: list[str] = []

    def cancel(op: BusinessOperation, ctx: ExecutionContext) -> dict[str, Any]:
        seen.append(op.operation_type)
        return {"cancelled": op.affected_entities}

    def uncancel(op: BusinessOperation, ctx: ExecutionContext) -> dict[str, Any]:
        seen.append(op.operation_type)
        return {"restored": True}

    ex.register_business_handler("cancel_booking", cancel)
    ex.register_business_handler("reverse_cancel_booking", uncancel)

    out = ex.run_business_operation(
        BusinessOperation(operation_type="cancel_booking", affected_entities=["b-1"]), _ctx()
    )
    assert out == {"cancelled": ["b-1"]}

    step = RollbackOperation(
        order=1,
        type="business_reversal",
        operation="REVERSE cancel_booking",
        description="Reverse cancel_booking business operation",
        risk_level="medium",
    )
    comp = ex.apply_compensation(step, _ctx())
    assert comp == {"step": 1, "applied": True, "result": {"restored": True}}
    assert seen == ["cancel_booking", "reverse_cancel_booking"]

    with pytest.raises(ExecutorError, match="No handler"):
        ex.run_business_operation(BusinessOperation(operation_type="unknown_op"), _ctx())


def test_compensation_runs_executable_steps_and_acknowledges_placeholders() -> None:
    engine = _mk_engine()
    _setup_sqlite(engine)
    ex = SqlAlchemyExecutor(engine)

    applied = ex.apply_compensation(
        RollbackOperation(
            order=2,
            type="schema_rollback",
            operation="DELETE FROM t WHERE name = 'Alice'",
            description="undo insert",
            risk_level="medium",
            executable=True,
        ),
        _ctx(),
    )
    assert applied == {"step": 2, "applied": True}
    assert _count(engine) == 2

    placeholder = ex.apply_compensation(
        RollbackOperation(
            order=1,
            type="sql_rollback",
            operation="ROLLBACK TRANSACTION",
            description="Rollback SQL transaction",
            risk_level="low",
        ),
        _ctx(),
    )
    assert placeholder == {"step": 1, "applied": False}
    assert _count(engine) == 2


def test_failing_compensation_raises_executor_error() -> None:
    ex = SqlAlchemyExecutor(_mk_engine())
    step = RollbackOperation(
        order=1,
        type="schema_rollback",
        operation="DROP TABLE never_created",
        description="undo",
        risk_level="medium",
        executable=True,
    )
    with pytest.raises(ExecutorError):
        ex.apply_compensation(step, _ctx())
