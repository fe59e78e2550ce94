"""Safety policy store.

Holds the named policies plus the table and pattern lists the risk assessor
consults. Read-mostly; every mutator and accessor takes the store lock and
accessors hand out snapshots.
"""

from __future__ import annotations

import re
import threading
from typing import Literal

from fastmcp.utilities.logging import get_logger
from pydantic import BaseModel, ConfigDict, Field

from .constants import Constants

_logger = get_logger(__name__)

RuleType = Literal["sql_pattern", "table_access"]
RuleAction = Literal["block", "warn", "require_approval", "log_only"]


class SafetyRule(BaseModel):
    """A single condition evaluated by the risk assessor."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: RuleType
    condition: str = Field(
        description="Regex for sql_pattern rules; table name for table_access rules"
    )
    action: RuleAction
    message: str


class SafetyPolicy(BaseModel):
    """Named group of rules; lower priority value is evaluated first."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    rules: list[SafetyRule] = Field(default_factory=list)
    is_active: bool = True
    priority: int = 100


def default_policies() -> list[SafetyPolicy]:
    return [
        SafetyPolicy(
            id="no-drop-tables",
            name="Prevent Table Drops",
            description="Prevents dropping of critical tables without approval",
            rules=[
                SafetyRule(
                    id="drop-table-rule",
                    type="sql_pattern",
                    condition=r"drop\s+table",
                    action="require_approval",
                    message="Table drops require management approval",
                )
            ],
            priority=1,
        ),
        SafetyPolicy(
            id="financial-operations",
            name="Financial Operation Controls",
            description="Requires approval for financial operations",
            rules=[
                SafetyRule(
                    id="payment-rule",
                    type="table_access",
                    condition="payments",
                    action="require_approval",
                    message="Payment operations require financial approval",
                )
            ],
            priority=2,
        ),
    ]


class PolicyStore:
    """Thread-safe holder of the active safety configuration."""

    def __init__(
        self,
        *,
        policies: list[SafetyPolicy] | None = None,
        critical_tables: set[str] | frozenset[str] | None = None,
        dangerous_patterns: list[re.Pattern[str]] | None = None,
        personal_data_tables: list[str] | None = None,
        business_processes: dict[str, list[str]] | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._policies: list[SafetyPolicy] = sorted(
            default_policies() if policies is None else policies, key=lambda p: p.priority
        )
        tables = Constants.DEFAULT_CRITICAL_TABLES if critical_tables is None else critical_tables
        self._critical_tables: set[str] = {t.lower() for t in tables}
        self._patterns: list[re.Pattern[str]] = list(
            Constants.DANGEROUS_PATTERNS if dangerous_patterns is None else dangerous_patterns
        )
        self._personal: list[str] = [
            t.lower()
            for t in (
                Constants.PERSONAL_DATA_TABLES
                if personal_data_tables is None
                else personal_data_tables
            )
        ]
        source = (
            {k: list(v) for k, v in Constants.BUSINESS_PROCESSES.items()}
            if business_processes is None
            else business_processes
        )
        self._processes: dict[str, list[str]] = {k.lower(): list(v) for k, v in source.items()}

    # ---- policies -------------------------------------------------------
    def add_policy(self, policy: SafetyPolicy) -> None:
        """Add or replace a policy by id, keeping priority order."""
        with self._lock:
            self._policies = [p for p in self._policies if p.id != policy.id]
            self._policies.append(policy)
            self._policies.sort(key=lambda p: p.priority)
        _logger.info("Safety policy added: %s (priority=%d)", policy.id, policy.priority)

    def remove_policy(self, policy_id: str) -> bool:
        with self._lock:
            before = len(self._policies)
            self._policies = [p for p in self._policies if p.id != policy_id]
            removed = len(self._policies) != before
        if removed:
            _logger.info("Safety policy removed: %s", policy_id)
        return removed

    def get_active_policies(self) -> list[SafetyPolicy]:
        with self._lock:
            return [p for p in self._policies if p.is_active]

    def list_policies(self) -> list[SafetyPolicy]:
        with self._lock:
            return list(self._policies)

    # ---- critical tables ------------------------------------------------
    def add_critical_table(self, table: str) -> None:
        with self._lock:
            self._critical_tables.add(table.lower())

    def remove_critical_table(self, table: str) -> bool:
        with self._lock:
            key = table.lower()
            if key not in self._critical_tables:
                return False
            self._critical_tables.discard(key)
            return True

    def critical_tables(self) -> list[str]:
        """Critical tables in a stable (sorted) order."""
        with self._lock:
            return sorted(self._critical_tables)

    def is_critical(self, table: str) -> bool:
        with self._lock:
            return table.lower() in self._critical_tables

    # ---- patterns and compliance lists ----------------------------------
    def add_dangerous_pattern(self, pattern: str | re.Pattern[str]) -> None:
        compiled = re.compile(pattern, re.IGNORECASE) if isinstance(pattern, str) else pattern
        with self._lock:
            self._patterns.append(compiled)

    def dangerous_patterns(self) -> list[re.Pattern[str]]:
        with self._lock:
            return list(self._patterns)

    def personal_data_tables(self) -> list[str]:
        with self._lock:
            return list(self._personal)

    def business_processes_for(self, table: str) -> list[str]:
        with self._lock:
            found = self._processes.get(table.lower())
        return list(found) if found else [Constants.DEFAULT_BUSINESS_PROCESS]
