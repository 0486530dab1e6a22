from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class LedgerSnapshot:
    operations: Dict[str, int]
    points: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "operations": dict(self.operations),
            "points": dict(self.points),
        }


class LedgerObservabilityStore:
    """Count ledger operation outcomes and point volumes for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._operations: Dict[str, int] = defaultdict(int)
        self._points: Dict[str, int] = defaultdict(int)

    def record_outcome(self, operation: str, outcome: str) -> None:
        with self._lock:
            self._operations[f"{operation}:{outcome}"] += 1

    def record_points(self, movement: str, points: int) -> None:
        with self._lock:
            self._points[movement] += abs(points)

    def snapshot(self) -> LedgerSnapshot:
        with self._lock:
            operations = dict(self._operations)
            points = dict(self._points)
        return LedgerSnapshot(operations=operations, points=points)

    def reset(self) -> None:
        with self._lock:
            self._operations.clear()
            self._points.clear()


_STORE = LedgerObservabilityStore()


def get_ledger_store() -> LedgerObservabilityStore:
    return _STORE


__all__ = ["get_ledger_store", "LedgerObservabilityStore", "LedgerSnapshot"]
