"""Typed initialization state for the execution coordinator.

Internal module providing strongly-typed lifecycle state for
`CoordinatorManager`. Not exposed outside the process.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto


class CoordinatorInitPhase(Enum):
    """Initialization phase for the coordinator lifecycle."""

    IDLE = auto()
    READY = auto()
    FAILED = auto()
    STOPPED = auto()


@dataclass(frozen=True)
class CoordinatorInitState:
    """Snapshot of initialization state with timestamps and error details."""

    phase: CoordinatorInitPhase
    started_at: float | None = None
    completed_at: float | None = None
    error_message: str | None = None
    dialect: str | None = None
