"""Health/status reporting for compose services.

Turns driver-reported probe results into a ``ContainerHealth`` value per
service, following the compose health-check rules:

.. code-block:: text

    no healthcheck configured ............ unknown
    probe succeeded ...................... healthy
    ``retries`` consecutive failures ..... unhealthy
    otherwise (no verdict yet) ........... starting

A ``start_period`` suppresses the ``unhealthy`` verdict until it has elapsed
since the service was started; failures inside the grace period still count
towards ``retries``. A service that was healthy stays healthy until the
failure threshold is reached.

Tags:
    health, healthcheck, status, compose
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from threading import Lock
from typing import Any

from compose_spine.core.timing import as_utc, utc_now
from compose_spine.deploy.config import ServiceSpec


class ContainerHealth(str, Enum):
    """Health verdict for one container (compose health states)."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    STARTING = "starting"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class HealthCheckResult:
    """Outcome of a single health probe, as reported by the driver."""

    service: str
    healthy: bool
    endpoint: str | None = None
    """Probe command or URL that was checked."""
    status_code: int | None = None
    latency_ms: float | None = None
    checked_at: datetime = field(default_factory=utc_now)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "endpoint": self.endpoint,
            "healthy": self.healthy,
            "status_code": self.status_code,
            "latency_ms": self.latency_ms,
            "checked_at": self.checked_at.isoformat(),
            "error": self.error,
        }


@dataclass
class _Track:
    started_at: datetime | None = None
    consecutive_failures: int = 0
    status: ContainerHealth = ContainerHealth.STARTING


class HealthReporter:
    """Per-service health tracker.

    Thread-safe: probe results for different services may arrive from
    concurrent operations.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._tracks: dict[str, _Track] = {}

    def reset(self, service: str, started_at: datetime | None = None) -> None:
        """Forget previous probes; called whenever the service is (re)started."""
        with self._lock:
            self._tracks[service] = _Track(started_at=as_utc(started_at) if started_at else utc_now())

    def forget(self, service: str) -> None:
        with self._lock:
            self._tracks.pop(service, None)

    def current(self, spec: ServiceSpec) -> ContainerHealth:
        if spec.healthcheck is None:
            return ContainerHealth.UNKNOWN
        with self._lock:
            track = self._tracks.get(spec.name)
            return track.status if track else ContainerHealth.STARTING

    def observe(self, spec: ServiceSpec, result: HealthCheckResult | None) -> ContainerHealth:
        """Fold one probe result into the service's health and return it."""
        check = spec.healthcheck
        if check is None:
            return ContainerHealth.UNKNOWN

        with self._lock:
            track = self._tracks.get(spec.name)
            if track is None:
                track = _Track(started_at=as_utc(result.checked_at) if result else utc_now())
                self._tracks[spec.name] = track
            if result is None:
                return track.status

            if result.healthy:
                track.consecutive_failures = 0
                track.status = ContainerHealth.HEALTHY
                return track.status

            track.consecutive_failures += 1
            in_grace = self._in_grace(track, check.start_period, as_utc(result.checked_at))
            if track.consecutive_failures >= check.retries and not in_grace:
                track.status = ContainerHealth.UNHEALTHY
            elif track.status is not ContainerHealth.HEALTHY:
                track.status = ContainerHealth.STARTING
            return track.status

    @staticmethod
    def _in_grace(track: _Track, start_period: float | None, now: datetime) -> bool:
        if not start_period or track.started_at is None:
            return False
        return (now - track.started_at).total_seconds() < start_period


def deployment_health(statuses: Iterable[ContainerHealth]) -> ContainerHealth:
    """Roll service verdicts up to one verdict for the whole deployment.

    Any unhealthy service makes the deployment unhealthy; otherwise any
    service still starting keeps it starting. Healthy only when every service
    with a verdict is healthy.
    """
    seen = {s for s in statuses if s is not ContainerHealth.UNKNOWN}
    if not seen:
        return ContainerHealth.UNKNOWN
    if ContainerHealth.UNHEALTHY in seen:
        return ContainerHealth.UNHEALTHY
    if ContainerHealth.STARTING in seen:
        return ContainerHealth.STARTING
    return ContainerHealth.HEALTHY


__all__ = [
    "ContainerHealth",
    "HealthCheckResult",
    "HealthReporter",
    "deployment_health",
]
