"""Risk assessment package.

Policy store, schema metadata lookups, sqlglot-backed SQL inspection and the
risk assessor that combines them. Everything here is read-only with respect
to the database.
"""

from __future__ import annotations

from .assessor import RiskAssessor, build_recommendations, derive_risk_level
from .metadata import SchemaMetadata, SqlAlchemySchemaMetadata, StaticSchemaMetadata
from .policies import PolicyStore, SafetyPolicy, SafetyRule, default_policies
from .sql_inspection import SqlInspection, SqlInspector, map_sqlalchemy_to_sqlglot

__all__ = [
    "PolicyStore",
    "RiskAssessor",
    "SafetyPolicy",
    "SafetyRule",
    "SchemaMetadata",
    "SqlAlchemySchemaMetadata",
    "SqlInspection",
    "SqlInspector",
    "StaticSchemaMetadata",
    "build_recommendations",
    "default_policies",
    "derive_risk_level",
    "map_sqlalchemy_to_sqlglot",
]
