"""Risk assessment for proposed operations.

The assessor is a pure function of (request, policy store, metadata): it
collects `ValidationIssue`s, derives the overall risk level as the maximum
severity observed, and attaches recommendations and an impact estimate.

The SQL checks are deliberately naive substring/regex matches over the raw
text. They over- and under-report (an UPDATE with its WHERE on the same line
still matches the UPDATE pattern; a table name inside a string literal still
counts as access). That behavior is kept stable for callers that depend on
it; do not mistake it for a parser.
"""

from __future__ import annotations

import re
from typing import assert_never

from fastmcp.utilities.logging import get_logger

from opguard_mcp.models import (
    BusinessOperation,
    ExecutionRequest,
    ImpactAssessment,
    IssueCategory,
    MigrationOperation,
    QueryOperation,
    RiskLevel,
    SchemaChangeOperation,
    Severity,
    ValidationIssue,
    ValidationResult,
)

from .constants import Constants
from .metadata import SchemaMetadata
from .policies import PolicyStore, RuleAction, SafetyRule
from .sql_inspection import SqlInspection, SqlInspector

_logger = get_logger(__name__)

_ACTION_SEVERITY: dict[RuleAction, Severity] = {
    "block": "critical",
    "require_approval": "error",
    "warn": "warning",
}
_RULE_CATEGORY: dict[str, IssueCategory] = {
    "sql_pattern": "security",
    "table_access": "compliance",
}
_CATEGORY_ORDER: tuple[IssueCategory, ...] = (
    "security",
    "data_loss",
    "performance",
    "compliance",
    "business_logic",
)


def derive_risk_level(issues: list[ValidationIssue]) -> RiskLevel:
    """Map the highest issue severity to a risk level (no issues -> low)."""
    if not issues:
        return "low"
    worst = max(issues, key=lambda i: Constants.SEVERITY_RANK[i.severity])
    return Constants.SEVERITY_TO_RISK[worst.severity]


def build_recommendations(issues: list[ValidationIssue]) -> list[str]:
    present = {i.category for i in issues}
    out: list[str] = []
    for category in _CATEGORY_ORDER:
        if category in present:
            out.extend(Constants.RECOMMENDATIONS[category])
    return out


class RiskAssessor:
    """Classifies a request into issues, a risk level and an impact estimate."""

    def __init__(
        self,
        policy_store: PolicyStore,
        metadata: SchemaMetadata | None = None,
        inspector: SqlInspector | None = None,
    ) -> None:
        self.policy_store = policy_store
        self.metadata = metadata
        self.inspector = inspector or SqlInspector()

    def assess(self, request: ExecutionRequest) -> ValidationResult:
        op = request.operation
        if isinstance(op, QueryOperation):
            issues = self.query_issues(op.sql)
            risk = derive_risk_level(issues)
            impact = self._sql_impact([op.sql], risk)
        elif isinstance(op, SchemaChangeOperation):
            issues = self._schema_change_issues(op)
            risk = derive_risk_level(issues)
            impact = self._schema_change_impact(op)
        elif isinstance(op, BusinessOperation):
            issues = self._business_issues(op)
            risk = derive_risk_level(issues)
            impact = ImpactAssessment(
                affected_records=len(op.affected_entities),
                business_processes=[op.operation_type],
                reversibility="partially_reversible",
                data_integrity_risk=20,
            )
        elif isinstance(op, MigrationOperation):
            issues = self._migration_issues(op)
            risk = derive_risk_level(issues)
            impact = self._sql_impact(op.statements, risk)
        else:
            assert_never(op)

        result = ValidationResult(
            is_valid=risk != "critical",
            risk_level=risk,
            issues=issues,
            recommendations=build_recommendations(issues),
            requires_approval=risk in {"high", "critical"},
            estimated_impact=impact,
        )
        _logger.info(
            "Assessed %s request %s: risk=%s issues=%d approval_required=%s",
            request.kind,
            request.id,
            result.risk_level,
            len(issues),
            result.requires_approval,
        )
        return result

    # ---- SQL text checks ------------------------------------------------
    def query_issues(self, sql: str) -> list[ValidationIssue]:
        """All textual checks for one SQL string, in a fixed order."""
        issues: list[ValidationIssue] = []
        issues.extend(self._check_dangerous_patterns(sql))
        issues.extend(self._check_critical_table_access(sql))
        issues.extend(self._check_data_volume(sql))
        issues.extend(self._check_personal_data(sql))
        issues.extend(self._check_policy_rules(sql))
        return issues

    def _check_dangerous_patterns(self, sql: str) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        normalized = sql.lower().strip()

        for pattern in self.policy_store.dangerous_patterns():
            if pattern.search(normalized):
                issues.append(
                    ValidationIssue(
                        category="security",
                        severity="critical",
                        message=f"Dangerous SQL pattern detected: {pattern.pattern}",
                        suggested_fix="Use parameterized queries and avoid dynamic SQL",
                    )
                )

        if (
            "delete from" in normalized or "update " in normalized
        ) and "where" not in normalized:
            issues.append(
                ValidationIssue(
                    category="data_loss",
                    severity="critical",
                    message="DELETE or UPDATE statement without WHERE clause detected",
                    suggested_fix="Add appropriate WHERE clause to limit affected records",
                )
            )
        return issues

    def _check_critical_table_access(self, sql: str) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        normalized = sql.lower()

        for table in self.policy_store.critical_tables():
            if table not in normalized:
                continue
            if "drop table" in normalized or "truncate" in normalized:
                issues.append(
                    ValidationIssue(
                        category="data_loss",
                        severity="critical",
                        message=f"Attempting destructive operation on critical table: {table}",
                        affected_tables=[table],
                        suggested_fix="Create backup before proceeding",
                    )
                )
            elif "delete from" in normalized or "update " in normalized:
                issues.append(
                    ValidationIssue(
                        category="business_logic",
                        severity="warning",
                        message=f"Modifying critical table: {table}",
                        affected_tables=[table],
                        suggested_fix="Ensure proper authorization and logging",
                    )
                )
        return issues

    def _check_data_volume(self, sql: str) -> list[ValidationIssue]:
        lowered = sql.lower()
        if "select *" in lowered and "limit" not in lowered:
            return [
                ValidationIssue(
                    category="performance",
                    severity="warning",
                    message="SELECT * without LIMIT may return large result set",
                    suggested_fix="Add LIMIT clause or specify required columns",
                )
            ]
        return []

    def _check_personal_data(self, sql: str) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        normalized = sql.lower()
        if "select" not in normalized:
            return issues
        for table in self.policy_store.personal_data_tables():
            if table in normalized:
                issues.append(
                    ValidationIssue(
                        category="compliance",
                        severity="warning",
                        message=f"Accessing personal data table: {table}",
                        affected_tables=[table],
                        suggested_fix="Ensure GDPR compliance and proper data access logging",
                    )
                )
        return issues

    def _check_policy_rules(self, sql: str, *, table: str | None = None) -> list[ValidationIssue]:
        """Evaluate active policy rules against SQL text or a bare table name."""
        issues: list[ValidationIssue] = []
        for policy in self.policy_store.get_active_policies():
            for rule in policy.rules:
                if table is not None:
                    matched = (
                        rule.type == "table_access" and rule.condition.lower() in table.lower()
                    )
                else:
                    matched = _rule_matches_sql(rule, sql)
                if not matched:
                    continue
                if rule.action == "log_only":
                    _logger.info("Policy %s rule %s matched (log only)", policy.id, rule.id)
                    continue
                issues.append(
                    ValidationIssue(
                        category=_RULE_CATEGORY[rule.type],
                        severity=_ACTION_SEVERITY[rule.action],
                        message=f"{rule.message} (policy: {policy.name})",
                        affected_tables=[table] if table else None,
                    )
                )
        return issues

    # ---- per-kind checks -----------------------------------------------
    def _schema_change_issues(self, op: SchemaChangeOperation) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        table = op.table_name

        if self.policy_store.is_critical(table):
            if op.change_type == "drop_table":
                issues.append(
                    ValidationIssue(
                        category="data_loss",
                        severity="critical",
                        message=f"Attempting to drop critical table: {table}",
                        affected_tables=[table],
                        suggested_fix="Create a backup before proceeding",
                    )
                )
            elif op.change_type == "alter_table":
                issues.append(
                    ValidationIssue(
                        category="business_logic",
                        severity="warning",
                        message=f"Modifying critical table: {table}",
                        affected_tables=[table],
                        suggested_fix="Test changes in development environment first",
                    )
                )

        if op.change_type == "drop_table":
            dependents = self._dependents(table)
            if dependents:
                issues.append(
                    ValidationIssue(
                        category="data_loss",
                        severity="error",
                        message=f"Table {table} has dependent tables: {', '.join(dependents)}",
                        affected_tables=dependents,
                        suggested_fix="Remove foreign key constraints first",
                    )
                )

        if op.ddl:
            issues.extend(self._check_dangerous_patterns(op.ddl))
        issues.extend(self._check_policy_rules("", table=table))
        return issues

    def _business_issues(self, op: BusinessOperation) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        name = op.operation_type.lower()

        if any(tok in name for tok in Constants.DESTRUCTIVE_BUSINESS_TOKENS):
            issues.append(
                ValidationIssue(
                    category="business_logic",
                    severity="warning",
                    message=f"Destructive operation: {op.operation_type}",
                    suggested_fix="Confirm operation is intentional",
                )
            )
        if any(tok in name for tok in Constants.FINANCIAL_BUSINESS_TOKENS):
            issues.append(
                ValidationIssue(
                    category="compliance",
                    severity="error",
                    message="Financial operations require additional verification",
                    suggested_fix="Implement financial approval workflow",
                )
            )
        return issues

    def _migration_issues(self, op: MigrationOperation) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for statement in op.statements:
            issues.extend(self.query_issues(statement))
        issues.append(
            ValidationIssue(
                category="business_logic",
                severity="error",
                message=f"Data migration '{op.name}' requires review before execution",
                suggested_fix="Run the migration against a staging copy first",
            )
        )
        return issues

    # ---- impact estimates -----------------------------------------------
    def _sql_impact(self, statements: list[str], risk: RiskLevel) -> ImpactAssessment:
        inspections: list[SqlInspection] = [self.inspector.inspect(s) for s in statements]
        tables: list[str] = []
        mutated: list[str] = []
        for ins in inspections:
            tables.extend(t for t in ins.tables if t not in tables)
            mutated.extend(t for t in ins.mutated_tables if t not in mutated)

        if any(ins.is_destructive for ins in inspections):
            reversibility = "irreversible"
        elif all(ins.is_read_only for ins in inspections):
            reversibility = "reversible"
        else:
            reversibility = "partially_reversible"

        processes: list[str] = []
        for table in tables:
            for process in self.policy_store.business_processes_for(table):
                if process not in processes:
                    processes.append(process)

        return ImpactAssessment(
            affected_records=sum(self._row_count(t) or 0 for t in mutated),
            affected_tables=tables,
            business_processes=processes,
            reversibility=reversibility,
            estimated_downtime_minutes=0,
            data_integrity_risk=Constants.INTEGRITY_RISK_BY_LEVEL[risk],
        )

    def _schema_change_impact(self, op: SchemaChangeOperation) -> ImpactAssessment:
        is_drop = op.change_type == "drop_table"
        return ImpactAssessment(
            affected_records=self._row_count(op.table_name) or 0,
            affected_tables=[op.table_name],
            business_processes=self.policy_store.business_processes_for(op.table_name),
            reversibility="irreversible" if is_drop else "reversible",
            estimated_downtime_minutes=5 if op.change_type == "create_index" else 0,
            data_integrity_risk=90 if is_drop else 10,
        )

    # ---- metadata lookups -------------------------------------------------
    def _dependents(self, table: str) -> list[str]:
        if self.metadata is None:
            return []
        try:
            return self.metadata.dependent_tables(table)
        except Exception as exc:  # noqa: BLE001 - lookups never abort an assessment
            _logger.warning("Dependent-table lookup failed for %s: %s", table, exc)
            return []

    def _row_count(self, table: str) -> int | None:
        if self.metadata is None:
            return None
        try:
            return self.metadata.row_count(table)
        except Exception as exc:  # noqa: BLE001 - lookups never abort an assessment
            _logger.warning("Row count lookup failed for %s: %s", table, exc)
            return None


def _rule_matches_sql(rule: SafetyRule, sql: str) -> bool:
    if rule.type == "table_access":
        return rule.condition.lower() in sql.lower()
    try:
        return re.search(rule.condition, sql, re.IGNORECASE) is not None
    except re.error:
        _logger.warning("Rule %s has an invalid pattern; using substring match", rule.id)
        return rule.condition.lower() in sql.lower()
