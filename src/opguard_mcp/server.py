"""FastMCP server implementation for opguard-mcp."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import dotenv
from fastmcp import FastMCP
from fastmcp.utilities.logging import get_logger
from starlette.requests import Request
from starlette.responses import JSONResponse

from opguard_mcp.execute.mcp_tools import register_execution_tools
from opguard_mcp.services.coordinator_manager import CoordinatorManager

# Load environment variables
dotenv.load_dotenv()

# Configure a module-level logger for local server logs.
_logger = get_logger(__name__)

manager = CoordinatorManager()


# -- Context Manager for coordinator initialization ---------------------------
@asynccontextmanager
async def lifespan(_mcp_instance: FastMCP) -> AsyncGenerator[None]:
    """FastMCP lifespan context manager for coordinator initialization."""
    try:
        _logger.info("Initializing ExecutionCoordinator during lifespan startup")
        await manager.initialize()
        yield
    finally:
        _logger.info("Shutting down ExecutionCoordinator during lifespan shutdown")
        await manager.shutdown()


# Create the main MCP server instance with lifespan
mcp = FastMCP(
    instructions=(
        "This provides a safety gate for AI-proposed database operations. "
        "Submit queries, schema changes, business operations or migrations; "
        "each is risk-assessed, approved automatically or by a human, executed "
        "with before/after snapshots, and rolled back on failure or request."
    ),
    lifespan=lifespan,
)

# -- Tool Registration -------------------------------------------------------
register_execution_tools(mcp, manager)


# -- Health Check ----------------------------------------------------------
@mcp.custom_route("/health", methods=["GET"])
async def health_check(_request: Request) -> JSONResponse:
    state = manager.status()
    return JSONResponse(
        {
            "status": "healthy" if manager.is_initialized else "degraded",
            "service": "opguard-mcp",
            "coordinator": state.phase.name.lower(),
            "dialect": state.dialect,
        }
    )


# -- Main Entrypoint -------------------------------------------------------

# Use fastmcp command to start the server
# fastmcp run
