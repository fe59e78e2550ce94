"""Constants for risk assessment.

Default critical tables, dangerous SQL shapes, personal-data tables and the
table → business-process map used when estimating impact.
"""

from __future__ import annotations

import re
from typing import Final

from opguard_mcp.models import RiskLevel, Severity


class Constants:
    """Default policy data for the risk assessor."""

    DEFAULT_CRITICAL_TABLES: Final[frozenset[str]] = frozenset(
        {
            "users",
            "business_units",
            "customers",
            "customer_contacts",
            "employees",
            "financial_transactions",
            "payments",
            "service_bookings",
            "equipment",
            "permissions",
            "audit_logs",
        }
    )

    PERSONAL_DATA_TABLES: Final[tuple[str, ...]] = (
        "users",
        "customers",
        "employees",
        "customer_contacts",
    )

    # Matched against lower-cased, stripped SQL text. Heuristic, not a parser.
    DANGEROUS_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
        re.compile(r"drop\s+database", re.IGNORECASE),
        re.compile(r"drop\s+schema", re.IGNORECASE),
        re.compile(r"truncate\s+table", re.IGNORECASE),
        re.compile(r"delete\s+from\s+\w+\s*$", re.IGNORECASE),
        re.compile(r"update\s+\w+\s+set\s+.*$", re.IGNORECASE),
        re.compile(r"union\s+select", re.IGNORECASE),
        re.compile(r"exec\s*\(", re.IGNORECASE),
        re.compile(r"xp_cmdshell", re.IGNORECASE),
        re.compile(r"sp_executesql", re.IGNORECASE),
        re.compile(r"--\s*$", re.MULTILINE),
        re.compile(r"/\*.*\*/", re.DOTALL),
        re.compile(r";\s*drop", re.IGNORECASE),
        re.compile(r";\s*delete", re.IGNORECASE),
        re.compile(r";\s*update", re.IGNORECASE),
        re.compile(r";\s*insert", re.IGNORECASE),
    )

    BUSINESS_PROCESSES: Final[dict[str, tuple[str, ...]]] = {
        "users": ("Authentication", "User Management"),
        "customers": ("Customer Management", "Sales Process"),
        "orders": ("Order Processing", "Fulfillment"),
        "payments": ("Payment Processing", "Financial Reporting"),
        "employees": ("HR Management", "Payroll"),
        "equipment": ("Asset Management", "Maintenance Scheduling"),
    }
    DEFAULT_BUSINESS_PROCESS: Final[str] = "General Operations"

    DESTRUCTIVE_BUSINESS_TOKENS: Final[tuple[str, ...]] = ("delete", "cancel")
    FINANCIAL_BUSINESS_TOKENS: Final[tuple[str, ...]] = ("payment", "refund")

    SEVERITY_TO_RISK: Final[dict[Severity, RiskLevel]] = {
        "critical": "critical",
        "error": "high",
        "warning": "medium",
    }
    SEVERITY_RANK: Final[dict[Severity, int]] = {"warning": 1, "error": 2, "critical": 3}

    INTEGRITY_RISK_BY_LEVEL: Final[dict[RiskLevel, int]] = {
        "low": 10,
        "medium": 30,
        "high": 60,
        "critical": 90,
    }

    RECOMMENDATIONS: Final[dict[str, tuple[str, ...]]] = {
        "security": (
            "Review and sanitize all user inputs",
            "Use parameterized queries to prevent SQL injection",
        ),
        "data_loss": (
            "Create a backup before executing this operation",
            "Test the operation in a development environment first",
        ),
        "performance": (
            "Add appropriate indexes to improve query performance",
            "Consider pagination for large result sets",
        ),
        "compliance": (
            "Ensure proper data access logging and audit trails",
            "Verify compliance with GDPR and other regulations",
        ),
        "business_logic": ("Confirm the operation's intent with the business owner",),
    }
