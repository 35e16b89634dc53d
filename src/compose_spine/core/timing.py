"""
Timing utilities for lifecycle operations.

- Context manager: ``with timed_block("start") as timer: ...``
- ``TimingResult`` keeps wall-clock start (for reporting) and a monotonic
  clock (for the duration), so durations never go negative across clock
  adjustments.

Timer overhead is a pair of ``time.perf_counter()`` calls.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


def _generate_span_id() -> str:
    """Generate a short span ID (8 hex chars)."""
    return uuid.uuid4().hex[:8]


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware datetime; naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


@dataclass
class TimingResult:
    """Result of a timed operation."""

    step: str
    span_id: str = field(default_factory=_generate_span_id)
    started_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None
    _start: float = field(default_factory=time.perf_counter, repr=False)
    _end: float | None = field(default=None, repr=False)
    metrics: dict[str, Any] = field(default_factory=dict)

    def stop(self) -> TimingResult:
        """Record end time. Idempotent."""
        if self._end is None:
            self._end = time.perf_counter()
            self.completed_at = utc_now()
        return self

    @property
    def duration_seconds(self) -> float:
        if self._end is None:
            return time.perf_counter() - self._start
        return self._end - self._start

    @property
    def duration_ms(self) -> float:
        return self.duration_seconds * 1000

    def add_metric(self, key: str, value: Any) -> TimingResult:
        self.metrics[key] = value
        return self

    def to_log_dict(self) -> dict[str, Any]:
        result = {
            "duration_ms": round(self.duration_ms, 2),
            "span_id": self.span_id,
        }
        result.update(self.metrics)
        return result


@contextmanager
def timed_block(step: str = "unnamed") -> Iterator[TimingResult]:
    """
    Low-level timing context manager.

    Does not log; callers decide what to emit with the result.

    Usage:
        with timed_block("compose.start") as timer:
            outcome = run()
            timer.add_metric("service_count", len(outcome.results))
        print(f"Took {timer.duration_ms}ms")
    """
    timer = TimingResult(step=step)
    try:
        yield timer
    finally:
        timer.stop()


__all__ = ["TimingResult", "as_utc", "timed_block", "utc_now"]
