"""In-memory runtime driver for tests.

``FakeRuntimeDriver`` implements the ``RuntimeDriver`` protocol without a
container engine. Every call is recorded with a monotonically increasing
sequence number at dispatch and at completion, so tests can assert ordering
("api was never dispatched before db finished").

.. code-block:: text

    Inject behaviour:
      driver.fail("start_services", "db", "port in use")     → DriverResult.failure
      driver.fail("stop_services", "db", unreachable=True)    → unreachable failure
      driver.raise_on("build_images", "api", RuntimeError())  → call raises
      driver.omit("start_services", "web")                    → no entry in result
      driver.delay("start_services", "db", 0.05)              → slow call
      driver.reject_config("bad network")                     → validate_config fails
      driver.fail_removal("volume busy", ("pgdata",))          → remove_deployment fails
      driver.push_probe("db", healthy=False)                  → next inspect probe
      driver.set_logs("api", "line1\\nline2")
      driver.make_absent("web")                               → inspect returns None

    Inspect usage:
      driver.dispatched("start_services")  → ["db", "api", "web"]
      driver.events                        → [DriverEvent(seq, method, service, "begin"|"end")]

Example:
    >>> driver = FakeRuntimeDriver()
    >>> driver.fail("start_services", "db")
    >>> driver.start_services(["db"])["db"].ok
    False
"""

from __future__ import annotations

import itertools
import time
from collections import defaultdict, deque
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from threading import Lock

from compose_spine.core.timing import utc_now
from compose_spine.deploy.config import DeploymentConfig
from compose_spine.deploy.driver import DriverResult, RemovalResult, ServiceInspection, ValidationResult
from compose_spine.deploy.health import HealthCheckResult


@dataclass(frozen=True)
class DriverEvent:
    seq: int
    method: str
    service: str | None
    phase: str
    """``"begin"`` or ``"end"``."""


@dataclass
class _Failure:
    reason: str
    unreachable: bool = False
    times: int | None = None


class FakeRuntimeDriver:
    """Scriptable in-memory ``RuntimeDriver``."""

    def __init__(self, *, default_logs: str = "") -> None:
        self._lock = Lock()
        self._seq = itertools.count(1)
        self.events: list[DriverEvent] = []

        self.running: set[str] = set()
        self.built: set[str] = set()
        self.removed = False
        self.volumes_removed = False
        self.validated: list[str] = []

        self._default_logs = default_logs
        self._logs: dict[str, str | bytes] = {}
        self._absent: set[str] = set()
        self._failures: dict[tuple[str, str], _Failure] = {}
        self._raises: dict[tuple[str, str | None], BaseException] = {}
        self._omitted: set[tuple[str, str]] = set()
        self._delays: dict[tuple[str, str | None], float] = {}
        self._probes: dict[str, deque[HealthCheckResult]] = defaultdict(deque)
        self._config_rejection: str | None = None
        self._removal_failure: RemovalResult | None = None

    # ------------------------------------------------------------------
    # Scripting
    # ------------------------------------------------------------------

    def fail(self, method: str, service: str, reason: str = "injected failure", *,
             unreachable: bool = False, times: int | None = None) -> None:
        """Make ``method`` report a failure for ``service`` (``times`` calls, or always)."""
        self._failures[(method, service)] = _Failure(reason, unreachable, times)

    def raise_on(self, method: str, service: str | None = None, exc: BaseException | None = None) -> None:
        """Make ``method`` raise when called (for ``service``, or for any service)."""
        self._raises[(method, service)] = exc or RuntimeError(f"injected {method} error")

    def omit(self, method: str, service: str) -> None:
        self._omitted.add((method, service))

    def delay(self, method: str, service: str | None, seconds: float) -> None:
        self._delays[(method, service)] = seconds

    def reject_config(self, reason: str) -> None:
        self._config_rejection = reason

    def fail_removal(self, reason: str, resources: Sequence[str] = ()) -> None:
        self._removal_failure = RemovalResult(ok=False, reason=reason, failed_resources=tuple(resources))

    def push_probe(self, service: str, healthy: bool, *, error: str | None = None,
                   status_code: int | None = None, latency_ms: float | None = None,
                   checked_at: datetime | None = None) -> HealthCheckResult:
        probe = HealthCheckResult(
            service=service,
            healthy=healthy,
            endpoint="probe",
            status_code=status_code,
            latency_ms=latency_ms,
            error=error,
            checked_at=checked_at or utc_now(),
        )
        self._probes[service].append(probe)
        return probe

    def set_logs(self, service: str, text: str | bytes) -> None:
        self._logs[service] = text

    def make_absent(self, service: str) -> None:
        self._absent.add(service)

    # ------------------------------------------------------------------
    # Assertions
    # ------------------------------------------------------------------

    def dispatched(self, method: str) -> list[str]:
        """Services passed to ``method``, in dispatch order."""
        with self._lock:
            return [e.service for e in self.events if e.method == method and e.phase == "begin" and e.service]

    def seq_of(self, method: str, service: str, phase: str = "begin") -> int | None:
        with self._lock:
            for event in self.events:
                if (event.method, event.service, event.phase) == (method, service, phase):
                    return event.seq
        return None

    def call_count(self, method: str) -> int:
        with self._lock:
            return sum(1 for e in self.events if e.method == method and e.phase == "begin")

    # ------------------------------------------------------------------
    # RuntimeDriver protocol
    # ------------------------------------------------------------------

    def validate_config(self, config: DeploymentConfig) -> ValidationResult:
        self._enter("validate_config", None)
        self.validated.append(config.project_name)
        self._leave("validate_config", None)
        if self._config_rejection:
            return ValidationResult(ok=False, reason=self._config_rejection)
        return ValidationResult(ok=True)

    def start_services(self, names: Sequence[str]) -> Mapping[str, DriverResult]:
        return self._batch("start_services", names, self.running.add)

    def stop_services(self, names: Sequence[str]) -> Mapping[str, DriverResult]:
        return self._batch("stop_services", names, self.running.discard)

    def build_images(self, names: Sequence[str]) -> Mapping[str, DriverResult]:
        return self._batch("build_images", names, self.built.add)

    def restart_services(self, names: Sequence[str]) -> Mapping[str, DriverResult]:
        return self._batch("restart_services", names, self.running.add)

    def remove_deployment(self, remove_volumes: bool) -> RemovalResult:
        self._enter("remove_deployment", None)
        self._leave("remove_deployment", None)
        if self._removal_failure is not None:
            return self._removal_failure
        with self._lock:
            self.running.clear()
            self.removed = True
            self.volumes_removed = remove_volumes
        return RemovalResult(ok=True)

    def inspect_service(self, name: str) -> ServiceInspection | None:
        self._enter("inspect_service", name)
        self._leave("inspect_service", name)
        with self._lock:
            if self.removed or name in self._absent:
                return None
            probes = self._probes.get(name)
            probe = probes.popleft() if probes else None
            running = name in self.running
        return ServiceInspection(
            service=name,
            running=running,
            container_id=f"fake-{name}" if running else None,
            status="running" if running else "exited",
            probe=probe,
        )

    def fetch_logs(self, name: str, line_count: int) -> str | bytes:
        self._enter("fetch_logs", name)
        self._leave("fetch_logs", name)
        return self._logs.get(name, self._default_logs)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _record(self, method: str, service: str | None, phase: str) -> None:
        with self._lock:
            self.events.append(DriverEvent(next(self._seq), method, service, phase))

    def _enter(self, method: str, service: str | None) -> None:
        self._record(method, service, "begin")
        delay = self._delays.get((method, service), self._delays.get((method, None), 0.0))
        if delay:
            time.sleep(delay)
        exc = self._raises.get((method, service)) or self._raises.get((method, None))
        if exc is not None:
            self._record(method, service, "end")
            raise exc

    def _leave(self, method: str, service: str | None) -> None:
        self._record(method, service, "end")

    def _batch(self, method: str, names: Sequence[str], on_success) -> dict[str, DriverResult]:
        results: dict[str, DriverResult] = {}
        for name in names:
            self._enter(method, name)
            failure = self._take_failure(method, name)
            if (method, name) in self._omitted:
                pass
            elif failure is not None:
                results[name] = DriverResult.failure(name, failure.reason, unreachable=failure.unreachable)
            else:
                with self._lock:
                    on_success(name)
                results[name] = DriverResult.success(name, container_id=f"fake-{name}")
            self._leave(method, name)
        return results

    def _take_failure(self, method: str, name: str) -> _Failure | None:
        with self._lock:
            failure = self._failures.get((method, name))
            if failure is None:
                return None
            if failure.times is not None:
                failure.times -= 1
                if failure.times <= 0:
                    del self._failures[(method, name)]
            return failure


__all__ = ["DriverEvent", "FakeRuntimeDriver"]
