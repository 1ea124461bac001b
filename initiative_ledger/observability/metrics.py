"""
In-process counters.

The ledger counts appended attestations, schema provisioning runs, and
best-effort writes that failed without failing their operation. Values
live for the life of the process; ``REGISTRY.snapshot()`` reads them all.
"""

import threading


class Counter:
    """Monotonic integer guarded by its own lock."""

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self._lock = threading.Lock()
        self._value = 0

    def inc(self, amount: int = 1) -> None:
        with self._lock:
            self._value += amount

    @property
    def value(self) -> int:
        return self._value

    def __repr__(self) -> str:
        return f"Counter({self.name!r}, value={self._value})"


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, Counter] = {}

    def counter(self, name: str, description: str = "") -> Counter:
        """Return the counter called *name*, registering it on first use."""
        with self._lock:
            return self._counters.setdefault(name, Counter(name, description))

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            counters = list(self._counters.values())
        return {c.name: c.value for c in counters}


REGISTRY = MetricsRegistry()

attestations_emitted = REGISTRY.counter("attestations_emitted", "Attestation rows appended")
best_effort_failures = REGISTRY.counter(
    "best_effort_failures", "Auxiliary writes that failed without failing the request"
)
schema_provisions = REGISTRY.counter("schema_provisions", "Successful schema provisioning runs")
