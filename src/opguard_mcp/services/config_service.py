"""Configuration service for opguard-mcp.

This module centralizes environment variable handling, database engine
creation and the policy store built from configuration.
"""

from __future__ import annotations

import os

import sqlalchemy as sa

from opguard_mcp.safety import PolicyStore

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _env_int(name: str, default: int, minimum: int) -> int:
    val = os.getenv(name, str(default))
    try:
        n = int(val)
    except ValueError:
        n = default
    return max(minimum, n)


def _env_bool(name: str, default: bool) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    normalized = val.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return default


class ConfigService:
    """Service for managing configuration and database connections."""

    @staticmethod
    def get_database_url() -> str:
        """Get database URL from environment variable.

        Returns:
            Database URL string

        Raises:
            ValueError: If OPGUARD_MCP_DATABASE_URL environment variable is not set
        """
        database_url = os.getenv("OPGUARD_MCP_DATABASE_URL")
        if not database_url:
            error_msg = "OPGUARD_MCP_DATABASE_URL environment variable not set"
            raise ValueError(error_msg)
        return database_url

    @staticmethod
    def create_database_engine(url: str) -> sa.Engine:
        """Create SQLAlchemy database engine.

        Args:
            url: Database connection URL

        Returns:
            SQLAlchemy Engine instance
        """
        return sa.create_engine(url, pool_pre_ping=True)

    # ---- Result limits ------------------------------------------------------
    @staticmethod
    def result_row_limit() -> int:
        """Maximum number of rows returned from a query execution."""
        return _env_int("OPGUARD_MCP_ROW_LIMIT", 200, 1)

    @staticmethod
    def history_limit() -> int:
        """Default number of results returned by execution history."""
        return _env_int("OPGUARD_MCP_HISTORY_LIMIT", 50, 1)

    # ---- Coordinator behavior ----------------------------------------------
    @staticmethod
    def auto_execute() -> bool:
        """Execute requests as soon as they are approved."""
        return _env_bool("OPGUARD_MCP_AUTO_EXECUTE", default=True)

    @staticmethod
    def audit_to_database() -> bool:
        """Persist audit entries and approval requests to the target database."""
        return _env_bool("OPGUARD_MCP_AUDIT_TO_DATABASE", default=True)

    @staticmethod
    def extra_critical_tables() -> list[str]:
        """Comma-separated tables added to the default critical-table list."""
        raw = os.getenv("OPGUARD_MCP_EXTRA_CRITICAL_TABLES", "")
        return [t.strip() for t in raw.split(",") if t.strip()]

    @staticmethod
    def build_policy_store() -> PolicyStore:
        """Default policy store extended with configured critical tables."""
        store = PolicyStore()
        for table in ConfigService.extra_critical_tables():
            store.add_critical_table(table)
        return store
