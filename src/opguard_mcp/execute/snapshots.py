"""Append-only, checksummed execution snapshots."""

from __future__ import annotations

from collections import defaultdict
import copy
import hashlib
import json
import threading
from typing import Any

from fastmcp.utilities.logging import get_logger
from pydantic_core import to_jsonable_python

from opguard_mcp.models import Snapshot, SnapshotTag

_logger = get_logger(__name__)


def canonical_json(payload: dict[str, Any]) -> str:
    """Stable JSON rendering used for size and checksum."""
    return json.dumps(
        to_jsonable_python(payload, fallback=str),
        sort_keys=True,
        separators=(",", ":"),
    )


def checksum(payload: dict[str, Any]) -> str:
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


class SnapshotStore:
    """Per-execution ordered snapshot sequences. There is no deletion API.

    Payloads are copied on capture and on read, so stored snapshots never
    share state with callers.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshots: dict[str, list[Snapshot]] = defaultdict(list)

    def capture(self, execution_id: str, tag: SnapshotTag, payload: dict[str, Any]) -> Snapshot:
        body = canonical_json(payload)
        snapshot = Snapshot(
            execution_id=execution_id,
            tag=tag,
            payload=copy.deepcopy(payload),
            size_bytes=len(body.encode("utf-8")),
            checksum=hashlib.sha256(body.encode("utf-8")).hexdigest(),
        )
        with self._lock:
            self._snapshots[execution_id].append(snapshot)
        _logger.debug(
            "Snapshot %s captured for %s (tag=%s, size=%d)",
            snapshot.id,
            execution_id,
            tag,
            snapshot.size_bytes,
        )
        return snapshot.model_copy(deep=True)

    def snapshots(self, execution_id: str) -> list[Snapshot]:
        with self._lock:
            stored = list(self._snapshots.get(execution_id, []))
        return [s.model_copy(deep=True) for s in stored]

    def latest(self, execution_id: str, tag: SnapshotTag | None = None) -> Snapshot | None:
        for snapshot in reversed(self.snapshots(execution_id)):
            if tag is None or snapshot.tag == tag:
                return snapshot
        return None

    @staticmethod
    def verify(snapshot: Snapshot) -> bool:
        """True when the stored payload still matches its recorded checksum."""
        return checksum(snapshot.payload) == snapshot.checksum
