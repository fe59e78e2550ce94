"""Services package for opguard-mcp.

Main Components:
- ConfigService: Configuration and database connection management
- CoordinatorManager: Lifespan-scoped construction of the execution coordinator
"""

from .config_service import ConfigService
from .coordinator_manager import CoordinatorManager

__all__ = [
    "ConfigService",
    "CoordinatorManager",
]
