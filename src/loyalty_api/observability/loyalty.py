from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class LoyaltySnapshot:
    operations: Dict[str, int]
    failures: Dict[str, Dict[str, int]]
    concurrency: Dict[str, int]
    outbox: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "operations": dict(self.operations),
            "failures": {key: dict(value) for key, value in self.failures.items()},
            "concurrency": dict(self.concurrency),
            "outbox": dict(self.outbox),
        }


class LoyaltyObservabilityStore:
    """Collect card operation telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._operations: Dict[str, int] = defaultdict(int)
        self._failures_by_kind: Dict[str, int] = defaultdict(int)
        self._failures_by_operation: Dict[str, int] = defaultdict(int)
        self._concurrency: Dict[str, int] = defaultdict(int)
        self._outbox: Dict[str, int] = defaultdict(int)

    def record_operation(self, operation: str) -> None:
        with self._lock:
            self._operations[operation] += 1

    def record_failure(self, operation: str, kind: str) -> None:
        with self._lock:
            self._failures_by_kind[kind] += 1
            self._failures_by_operation[operation] += 1

    def record_concurrency_retry(self, operation: str) -> None:
        with self._lock:
            self._concurrency["retries"] += 1
            self._concurrency[f"operation:{operation}"] += 1

    def record_concurrency_exhausted(self, operation: str) -> None:
        with self._lock:
            self._concurrency["exhausted"] += 1

    def record_outbox_dispatch(self, outcome: str) -> None:
        with self._lock:
            self._outbox[outcome] += 1

    def snapshot(self) -> LoyaltySnapshot:
        with self._lock:
            operations = dict(self._operations)
            failures = {
                "by_kind": dict(self._failures_by_kind),
                "by_operation": dict(self._failures_by_operation),
            }
            concurrency = dict(self._concurrency)
            outbox = dict(self._outbox)
        return LoyaltySnapshot(
            operations=operations,
            failures=failures,
            concurrency=concurrency,
            outbox=outbox,
        )

    def reset(self) -> None:
        with self._lock:
            self._operations.clear()
            self._failures_by_kind.clear()
            self._failures_by_operation.clear()
            self._concurrency.clear()
            self._outbox.clear()


_STORE = LoyaltyObservabilityStore()


def get_loyalty_store() -> LoyaltyObservabilityStore:
    return _STORE


__all__ = ["get_loyalty_store", "LoyaltyObservabilityStore", "LoyaltySnapshot"]
