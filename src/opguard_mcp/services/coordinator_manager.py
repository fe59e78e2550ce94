"""Coordinator manager for opguard-mcp.

Builds the server's `ExecutionCoordinator` from configuration during the
FastMCP lifespan and disposes the database engine on shutdown. The manager is
an ordinary object owned by the server module; tests and embedders can build
their own or hand it a ready coordinator.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
import hashlib
import time

from fastmcp.utilities.logging import get_logger
import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from opguard_mcp.execute.audit import (
    ApprovalChannel,
    AuditSink,
    LoggingApprovalChannel,
    LoggingAuditSink,
    SqlAlchemyApprovalChannel,
    SqlAlchemyAuditSink,
)
from opguard_mcp.execute.coordinator import ExecutionCoordinator
from opguard_mcp.execute.executor import ExecutionLimits, SqlAlchemyExecutor
from opguard_mcp.safety import SqlAlchemySchemaMetadata, SqlInspector, map_sqlalchemy_to_sqlglot
from opguard_mcp.services.config_service import ConfigService
from opguard_mcp.services.state import CoordinatorInitPhase, CoordinatorInitState


class CoordinatorManager:
    """Owns the lifecycle of one `ExecutionCoordinator` and its engine."""

    def __init__(self) -> None:
        self._coordinator: ExecutionCoordinator | None = None
        self._engine: sa.Engine | None = None
        self._lock = asyncio.Lock()
        self._logger = get_logger(__name__)
        self._state = CoordinatorInitState(phase=CoordinatorInitPhase.IDLE)

    async def initialize(self) -> None:
        """Build the coordinator once; failures are recorded, not raised."""
        async with self._lock:
            if self._state.phase is not CoordinatorInitPhase.IDLE:
                self._logger.debug("Initialization already %s; skipping", self._state.phase)
                return
            self._state = replace(self._state, started_at=time.time())
            try:
                await asyncio.to_thread(self._initialize_sync)
            except (ValueError, RuntimeError, OSError, SQLAlchemyError) as exc:
                self._state = replace(
                    self._state,
                    phase=CoordinatorInitPhase.FAILED,
                    error_message=str(exc),
                    completed_at=time.time(),
                )
                self._logger.exception("ExecutionCoordinator initialization failed")
            else:
                self._state = replace(
                    self._state, phase=CoordinatorInitPhase.READY, completed_at=time.time()
                )

    def set_coordinator(self, coordinator: ExecutionCoordinator) -> None:
        """Install an externally built coordinator and mark the manager ready."""
        self._coordinator = coordinator
        self._state = CoordinatorInitState(
            phase=CoordinatorInitPhase.READY, started_at=time.time(), completed_at=time.time()
        )

    async def get_coordinator(self) -> ExecutionCoordinator:
        """Get the initialized coordinator.

        Raises:
            RuntimeError: If the coordinator is not initialized or initialization failed
        """
        phase = self._state.phase
        if phase is CoordinatorInitPhase.IDLE:
            msg = "ExecutionCoordinator is not initialized"
            raise RuntimeError(msg)
        if phase is CoordinatorInitPhase.FAILED:
            self._logger.error(
                "ExecutionCoordinator initialization previously failed: %s",
                self._state.error_message,
            )
            msg = "ExecutionCoordinator is not available due to initialization failure"
            raise RuntimeError(msg)
        if phase is CoordinatorInitPhase.STOPPED:
            msg = "ExecutionCoordinator has been stopped"
            raise RuntimeError(msg)
        if self._coordinator is None:
            msg = "ExecutionCoordinator instance is unexpectedly None"
            raise RuntimeError(msg)
        return self._coordinator

    async def shutdown(self) -> None:
        """Drop the coordinator and dispose the database engine."""
        async with self._lock:
            try:
                if self._engine is not None:
                    self._engine.dispose()
                    self._logger.debug("Database engine disposed")
            except (OSError, RuntimeError, SQLAlchemyError) as exc:
                self._logger.warning("Error during coordinator shutdown: %s", exc)
            finally:
                self._engine = None
                self._coordinator = None
                self._state = replace(self._state, phase=CoordinatorInitPhase.STOPPED)

    @property
    def is_initialized(self) -> bool:
        return self._state.phase is CoordinatorInitPhase.READY

    def status(self) -> CoordinatorInitState:
        """Return a snapshot of the initialization state."""
        return self._state

    # ---- internal ------------------------------------------------------------

    def _initialize_sync(self) -> None:
        """Perform synchronous initialization work. Runs in a worker thread."""
        self._logger.info("Starting ExecutionCoordinator initialization…")

        database_url = ConfigService.get_database_url()
        fp = hashlib.sha256(database_url.encode("utf-8")).hexdigest()[:10]
        self._logger.debug("Using database fingerprint: %s", fp)

        engine = ConfigService.create_database_engine(database_url)
        self._logger.debug("Testing database connectivity…")
        with engine.connect() as conn:
            conn.execute(sa.text("SELECT 1"))

        audit_sink: AuditSink
        approval_channel: ApprovalChannel
        if ConfigService.audit_to_database():
            audit_sink = SqlAlchemyAuditSink(engine)
            approval_channel = SqlAlchemyApprovalChannel(engine)
        else:
            audit_sink = LoggingAuditSink()
            approval_channel = LoggingApprovalChannel()

        self._coordinator = ExecutionCoordinator(
            SqlAlchemyExecutor(engine, ExecutionLimits(row_limit=ConfigService.result_row_limit())),
            audit_sink,
            ConfigService.build_policy_store(),
            metadata=SqlAlchemySchemaMetadata(engine),
            inspector=SqlInspector(map_sqlalchemy_to_sqlglot(engine.dialect.name)),
            approval_channel=approval_channel,
            auto_execute=ConfigService.auto_execute(),
            history_limit=ConfigService.history_limit(),
        )
        self._engine = engine
        self._state = replace(self._state, dialect=engine.dialect.name)
        self._logger.info(
            "ExecutionCoordinator ready (dialect=%s, audit_to_database=%s)",
            engine.dialect.name,
            ConfigService.audit_to_database(),
        )
