"""MCP tool registration for the execution safety gate.

Exposes the coordinator's public API as FastMCP tools. Coordinator calls can
block on the executor, so every tool hops to a worker thread.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Annotated

from fastmcp import Context, FastMCP
from fastmcp.utilities.logging import get_logger
from pydantic import Field

from opguard_mcp.models import (
    ActionResult,
    Approval,
    ApprovalType,
    ExecutionContext,
    ExecutionRequest,
    ExecutionResult,
    Operation,
    Priority,
    new_id,
)
from opguard_mcp.safety import SafetyPolicy

if TYPE_CHECKING:
    from opguard_mcp.execute.coordinator import ExecutionCoordinator
    from opguard_mcp.services.coordinator_manager import CoordinatorManager

_logger = get_logger(__name__)


async def _coordinator(mgr: CoordinatorManager, ctx: Context) -> ExecutionCoordinator:
    try:
        return await mgr.get_coordinator()
    except RuntimeError as exc:
        await ctx.error(f"Execution coordinator not ready: {exc}")
        raise


def register_execution_tools(mcp: FastMCP, manager: CoordinatorManager) -> None:
    """Register the submit/approve/status/history/rollback tools on `mcp`."""

    @mcp.tool
    async def submit_execution(
        ctx: Context,
        operation: Annotated[
            Operation,
            Field(
                description=(
                    "Operation to run, tagged by 'kind': query (sql), schema_change "
                    "(change_type, table_name, ddl, inverse_ddl), business_operation "
                    "(operation_type, affected_entities, parameters) or migration "
                    "(name, statements)."
                )
            ),
        ],
        user_id: Annotated[str, Field(description="Acting user identifier")],
        business_unit_id: Annotated[str, Field(description="Tenant / business-unit id")],
        requested_by: Annotated[
            str | None, Field(description="Submitting identity; defaults to user_id")
        ] = None,
        user_intent: Annotated[str, Field(description="What the caller wants to achieve")] = "",
        ai_confidence: Annotated[float, Field(ge=0.0, le=1.0)] = 1.0,
        priority: Annotated[Priority, Field(description="Request priority")] = "medium",
        request_id: Annotated[
            str | None, Field(description="Idempotency key; re-submits return the first result")
        ] = None,
    ) -> ExecutionResult:  # pyright: ignore[reportUnusedFunction]
        """Assess a proposed operation, plan its rollback and run it when policy allows.

        Low and medium risk requests are auto-approved and executed. Anything else stays
        pending until approve_execution supplies sufficient approvals.
        """
        coordinator = await _coordinator(manager, ctx)
        request = ExecutionRequest(
            id=request_id or new_id(),
            operation=operation,
            context=ExecutionContext(
                user_id=user_id,
                business_unit_id=business_unit_id,
                user_intent=user_intent,
                ai_confidence=ai_confidence,
            ),
            priority=priority,
            requested_by=requested_by or user_id,
        )
        _logger.info("submit_execution: %s request %s", request.kind, request.id)
        return await asyncio.to_thread(coordinator.submit_execution, request)

    @mcp.tool
    async def approve_execution(
        ctx: Context,
        execution_id: Annotated[str, Field(description="Execution id from submit_execution")],
        approved_by: Annotated[str, Field(description="Approver identity")],
        approval_type: Annotated[
            ApprovalType, Field(description="Critical risk requires an 'admin' approval")
        ] = "user",
        comments: Annotated[str | None, Field(description="Optional approval note")] = None,
    ) -> ActionResult:  # pyright: ignore[reportUnusedFunction]
        """Record an approval; the execution runs once approvals are sufficient."""
        coordinator = await _coordinator(manager, ctx)
        approval = Approval(
            approved_by=approved_by, approval_type=approval_type, comments=comments
        )
        return await asyncio.to_thread(coordinator.approve_execution, execution_id, approval)

    @mcp.tool
    async def get_execution_status(
        ctx: Context,
        execution_id: Annotated[str, Field(description="Execution id")],
    ) -> ExecutionResult | None:  # pyright: ignore[reportUnusedFunction]
        """Return the current execution record, or null when the id is unknown."""
        coordinator = await _coordinator(manager, ctx)
        return coordinator.get_execution_status(execution_id)

    @mcp.tool
    async def get_pending_executions(
        ctx: Context,
    ) -> list[ExecutionRequest]:  # pyright: ignore[reportUnusedFunction]
        """List requests awaiting approval, oldest first."""
        coordinator = await _coordinator(manager, ctx)
        return coordinator.get_pending_executions()

    @mcp.tool
    async def get_execution_history(
        ctx: Context,
        limit: Annotated[int | None, Field(ge=0, description="Maximum results")] = None,
    ) -> list[ExecutionResult]:  # pyright: ignore[reportUnusedFunction]
        """List executions, most recently executed first."""
        coordinator = await _coordinator(manager, ctx)
        return coordinator.get_execution_history(limit)

    @mcp.tool
    async def rollback_execution(
        ctx: Context,
        execution_id: Annotated[str, Field(description="Execution id to roll back")],
        reason: Annotated[str, Field(description="Why the rollback is requested")],
    ) -> ActionResult:  # pyright: ignore[reportUnusedFunction]
        """Replay the rollback plan in reverse order for a completed or failed execution."""
        coordinator = await _coordinator(manager, ctx)
        return await asyncio.to_thread(coordinator.rollback_execution, execution_id, reason)

    @mcp.tool
    async def list_safety_policies(
        ctx: Context,
    ) -> list[SafetyPolicy]:  # pyright: ignore[reportUnusedFunction]
        """List configured safety policies, active and inactive, by priority."""
        coordinator = await _coordinator(manager, ctx)
        return coordinator.policy_store.list_policies()

    _ = (
        submit_execution,
        approve_execution,
        get_execution_status,
        get_pending_executions,
        get_execution_history,
        rollback_execution,
        list_safety_policies,
    )
