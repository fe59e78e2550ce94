"""Sqlglot-backed structural inspection of SQL text.

Used for impact estimates only: which tables a statement touches, which of
them it mutates, and whether it is destructive. The dangerous-pattern checks
stay textual; this module never decides risk on its own.
"""

from __future__ import annotations

from functools import lru_cache
import logging
from typing import Literal

from pydantic import BaseModel, Field
import sqlglot
from sqlglot import expressions as sgl_exp

Dialect = Literal[
    "sql",
    "postgres",
    "mysql",
    "sqlite",
    "tsql",
    "oracle",
    "snowflake",
    "bigquery",
]

SQLALCHEMY_TO_SQLGLOT: dict[str, Dialect] = {
    "postgresql": "postgres",
    "postgres": "postgres",
    "mysql": "mysql",
    "sqlite": "sqlite",
    "mssql": "tsql",
    "sqlserver": "tsql",
    "oracle": "oracle",
    "snowflake": "snowflake",
    "bigquery": "bigquery",
}

_MUTATING = (
    sgl_exp.Insert,
    sgl_exp.Update,
    sgl_exp.Delete,
    sgl_exp.Merge,
    sgl_exp.Alter,
    sgl_exp.Create,
)
_DESTRUCTIVE = (sgl_exp.Drop, sgl_exp.TruncateTable)


def map_sqlalchemy_to_sqlglot(sa_dialect_name: str) -> Dialect:
    """Map a SQLAlchemy dialect name to a sqlglot dialect literal.

    Falls back to generic "sql" when unknown.
    """
    return SQLALCHEMY_TO_SQLGLOT.get(sa_dialect_name.lower(), "sql")


@lru_cache(maxsize=256)
def _cached_parse(sql: str, dialect: Dialect) -> tuple[sgl_exp.Expression, ...]:
    return tuple(stmt for stmt in sqlglot.parse(sql, dialect=dialect) if stmt is not None)


class SqlInspection(BaseModel):
    """Structural facts about one SQL text (possibly several statements)."""

    statement_types: list[str] = Field(default_factory=list)
    tables: list[str] = Field(default_factory=list, description="All referenced tables")
    mutated_tables: list[str] = Field(default_factory=list)
    is_read_only: bool = True
    is_destructive: bool = False
    parse_error: str | None = None


class SqlInspector:
    """Pure wrapper around sqlglot parsing; never raises on bad SQL."""

    def __init__(self, dialect: Dialect = "sql", logger: logging.Logger | None = None) -> None:
        self.dialect = dialect
        self._logger = logger or logging.getLogger(__name__)

    def inspect(self, sql: str) -> SqlInspection:
        try:
            statements = _cached_parse(sql, self.dialect)
        except Exception as e:  # noqa: BLE001 - unparsable SQL is reported, not raised
            self._logger.debug("SQL inspection parse failed: %s", e)
            return SqlInspection(is_read_only=False, parse_error=str(e))

        types: list[str] = []
        tables: list[str] = []
        mutated: list[str] = []
        read_only = True
        destructive = False

        for stmt in statements:
            types.append(type(stmt).__name__)
            for table in stmt.find_all(sgl_exp.Table):
                if table.name and table.name.lower() not in tables:
                    tables.append(table.name.lower())

            if isinstance(stmt, _DESTRUCTIVE):
                read_only = False
                destructive = True
                targets = list(stmt.find_all(sgl_exp.Table))
            elif isinstance(stmt, _MUTATING):
                read_only = False
                first = stmt.find(sgl_exp.Table)
                targets = [first] if first is not None else []
            elif isinstance(stmt, sgl_exp.Command):
                # Unparsed passthrough; assume it may write.
                read_only = False
                targets = []
            else:
                targets = []

            for target in targets:
                if target.name and target.name.lower() not in mutated:
                    mutated.append(target.name.lower())

        return SqlInspection(
            statement_types=types,
            tables=tables,
            mutated_tables=mutated,
            is_read_only=read_only,
            is_destructive=destructive,
        )
