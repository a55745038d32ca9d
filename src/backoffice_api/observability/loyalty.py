from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class LoyaltyLedgerSnapshot:
    operations: Dict[str, int]
    points: Dict[str, int]
    skipped: Dict[str, int]
    failures: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "operations": dict(self.operations),
            "points": dict(self.points),
            "skipped": dict(self.skipped),
            "failures": dict(self.failures),
        }


class LoyaltyLedgerObservabilityStore:
    """Collect ledger telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._operations: Dict[str, int] = defaultdict(int)
        self._points: Dict[str, int] = defaultdict(int)
        self._skipped: Dict[str, int] = defaultdict(int)
        self._failures: Dict[str, int] = defaultdict(int)

    def record_operation(self, operation: str, points: int = 0) -> None:
        with self._lock:
            self._operations[operation] += 1
            if points:
                self._points[operation] += int(points)

    def record_skip(self, operation: str, reason: str) -> None:
        with self._lock:
            self._skipped[f"{operation}:{reason}"] += 1

    def record_failure(self, operation: str) -> None:
        with self._lock:
            self._failures[operation] += 1

    def snapshot(self) -> LoyaltyLedgerSnapshot:
        with self._lock:
            return LoyaltyLedgerSnapshot(
                operations=dict(self._operations),
                points=dict(self._points),
                skipped=dict(self._skipped),
                failures=dict(self._failures),
            )

    def reset(self) -> None:
        with self._lock:
            self._operations.clear()
            self._points.clear()
            self._skipped.clear()
            self._failures.clear()


_STORE = LoyaltyLedgerObservabilityStore()


def get_loyalty_store() -> LoyaltyLedgerObservabilityStore:
    return _STORE


__all__ = ["get_loyalty_store", "LoyaltyLedgerObservabilityStore", "LoyaltyLedgerSnapshot"]
