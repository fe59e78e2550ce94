"""Read-only schema metadata lookups used during risk assessment.

Classes:
- SchemaMetadata: Protocol consumed by the risk assessor
- StaticSchemaMetadata: Dictionary-backed implementation for offline use
- SqlAlchemySchemaMetadata: Reflects foreign keys into a NetworkX graph
"""

from __future__ import annotations

import threading
from typing import Protocol

from fastmcp.utilities.logging import get_logger
import networkx as nx
import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

_logger = get_logger(__name__)


class SchemaMetadata(Protocol):
    """Metadata the assessor may consult; implementations must not mutate state."""

    def dependent_tables(self, table: str) -> list[str]:
        """Tables holding foreign keys that reference ``table``."""
        ...

    def row_count(self, table: str) -> int | None:
        """Current row count, or None when unknown."""
        ...


class StaticSchemaMetadata:
    """Fixed metadata supplied up front."""

    def __init__(
        self,
        dependents: dict[str, list[str]] | None = None,
        row_counts: dict[str, int] | None = None,
    ) -> None:
        self._dependents = {k.lower(): list(v) for k, v in (dependents or {}).items()}
        self._row_counts = {k.lower(): v for k, v in (row_counts or {}).items()}

    def dependent_tables(self, table: str) -> list[str]:
        return list(self._dependents.get(table.lower(), []))

    def row_count(self, table: str) -> int | None:
        return self._row_counts.get(table.lower())


class SqlAlchemySchemaMetadata:
    """Foreign-key graph and row counts reflected from a live database.

    Nodes are lower-cased table names; an edge ``child -> parent`` means
    ``child`` holds a foreign key into ``parent``. Dependents of a table are
    therefore its predecessors. The graph is built on first use and cached
    until ``refresh`` is called.
    """

    def __init__(self, engine: sa.Engine, schemas: list[str | None] | None = None) -> None:
        self.engine = engine
        self._schemas: list[str | None] = schemas or [None]
        self._graph: nx.DiGraph[str] | None = None
        self._lock = threading.Lock()

    def refresh(self) -> None:
        with self._lock:
            self._graph = None

    def graph(self) -> nx.DiGraph[str]:
        with self._lock:
            if self._graph is None:
                self._graph = self._build_graph()
            return self._graph

    def dependent_tables(self, table: str) -> list[str]:
        graph = self.graph()
        key = table.lower()
        if key not in graph:
            return []
        return sorted(p for p in graph.predecessors(key) if p != key)

    def row_count(self, table: str) -> int | None:
        if table.lower() not in self.graph():
            return None
        try:
            with self.engine.connect() as conn:
                stmt = sa.select(sa.func.count()).select_from(sa.table(table))
                return int(conn.execute(stmt).scalar_one())
        except SQLAlchemyError as exc:
            _logger.warning("Row count for %s unavailable: %s", table, exc)
            return None

    def _build_graph(self) -> nx.DiGraph[str]:
        graph: nx.DiGraph[str] = nx.DiGraph()
        inspector = sa.inspect(self.engine)
        for schema in self._schemas:
            try:
                tables = inspector.get_table_names(schema=schema)
            except SQLAlchemyError as exc:
                _logger.warning("Could not list tables for schema %s: %s", schema, exc)
                continue
            for table in tables:
                graph.add_node(table.lower())
                try:
                    fks = inspector.get_foreign_keys(table, schema=schema)
                except SQLAlchemyError as exc:
                    _logger.warning("Could not read foreign keys for %s: %s", table, exc)
                    continue
                for fk in fks:
                    referred = fk.get("referred_table")
                    if referred:
                        graph.add_edge(table.lower(), referred.lower(), fk=fk.get("name"))
        _logger.info(
            "Foreign-key graph built: %d tables, %d references",
            graph.number_of_nodes(),
            graph.number_of_edges(),
        )
        return graph
