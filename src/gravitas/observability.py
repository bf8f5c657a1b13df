"""In-process latency metrics for pipeline stages."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from dataclasses import field
from threading import Lock
from time import perf_counter

logger = logging.getLogger(__name__)

_SAMPLE_WINDOW = 256


@dataclass
class StageLatency:
    """Running latency aggregate for one pipeline operation."""

    count: int = 0
    error_count: int = 0
    total_ms: float = 0.0
    min_ms: float = 0.0
    max_ms: float = 0.0
    last_ms: float = 0.0
    recent: deque[float] = field(default_factory=lambda: deque(maxlen=_SAMPLE_WINDOW))

    def add(self, duration_ms: float, ok: bool) -> None:
        self.count += 1
        if not ok:
            self.error_count += 1
        self.total_ms += duration_ms
        self.last_ms = duration_ms
        self.recent.append(duration_ms)
        if self.count == 1:
            self.min_ms = self.max_ms = duration_ms
        else:
            self.min_ms = min(self.min_ms, duration_ms)
            self.max_ms = max(self.max_ms, duration_ms)

    def p95(self) -> float:
        if not self.recent:
            return 0.0
        ordered = sorted(self.recent)
        idx = min(len(ordered) - 1, int(round(0.95 * (len(ordered) - 1))))
        return ordered[idx]

    def as_dict(self) -> dict[str, float | int]:
        return {
            "count": self.count,
            "error_count": self.error_count,
            "total_ms": round(self.total_ms, 3),
            "avg_ms": round(self.total_ms / self.count if self.count else 0.0, 3),
            "min_ms": round(self.min_ms, 3),
            "max_ms": round(self.max_ms, 3),
            "last_ms": round(self.last_ms, 3),
            "p95_ms": round(self.p95(), 3),
        }


_lock = Lock()
_stages: dict[str, StageLatency] = {}


def record_latency(*, operation: str, duration_ms: float, ok: bool = True) -> None:
    """Record one latency sample for *operation*."""
    normalized = max(float(duration_ms), 0.0)
    with _lock:
        _stages.setdefault(operation, StageLatency()).add(normalized, ok)
    logger.debug(
        "latency operation=%s duration_ms=%.3f ok=%s", operation, normalized, ok
    )


@contextmanager
def latency_timer(operation: str) -> Iterator[None]:
    """Time the wrapped block; a raised exception counts as an error sample."""
    started = perf_counter()
    ok = False
    try:
        yield
        ok = True
    finally:
        record_latency(
            operation=operation,
            duration_ms=(perf_counter() - started) * 1000,
            ok=ok,
        )


def latency_metrics_snapshot() -> dict[str, dict[str, float | int]]:
    """Return current latency aggregates keyed by operation."""
    with _lock:
        return {name: stage.as_dict() for name, stage in sorted(_stages.items())}


def reset_latency_metrics() -> None:
    """Clear all latency aggregates (test helper)."""
    with _lock:
        _stages.clear()
