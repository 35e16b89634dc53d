"""Compose lifecycle manager.

``ComposeManager`` runs lifecycle operations for one deployment (a compose
project) against an injected ``RuntimeDriver``:

.. code-block:: text

    validate_configuration()   graph + driver validation, raises on failure
    build(selector)            concurrent, one aggregated image-build error
    start(selector)            dependencies first, skips dependents of failures
    stop(selector)             dependents first, best-effort
    restart(selector)          stop phase then start phase (or in-place)
    down(remove_volumes)       stop everything, remove resources, terminal
    get_service_status(name)   advisory, never raises
    get_logs(name, lines)      advisory, never raises

Propagation:
    - ``configuration`` and ``compose`` errors (invalid graph, unknown
      service names, operating on a torn-down deployment) are raised.
    - Driver failures during mutating operations are captured per service
      into the returned ``OperationOutcome``; ``raise_for_errors()`` turns
      them into an exception on request. The manager never retries.
    - Advisory reads downgrade every failure to a ``container`` warning kept
      in ``warnings`` and return ``None`` / ``""``. A service turning
      unhealthy adds a ``health-check`` warning.

Logging:
    Every operation runs inside ``log_context(project=..., operation=...,
    span_id=...)``; worker threads inherit it, so driver-call log lines
    carry the same fields as the telemetry events.

Concurrency:
    One mutating operation at a time per manager. A second one started while
    another is in flight is rejected with a retryable ``daemon`` error.
    Service state lives in a ``StateStore``; its lock is never held across a
    driver call, and callers only ever see frozen snapshots.

Example::

    manager = ComposeManager(config, driver)
    outcome = manager.start()
    if not outcome.ok:
        for err in outcome.errors:
            print(err.code, err.retryable, err.help)

Tags:
    compose, lifecycle, manager, orchestration, dependencies, concurrency
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterable, Mapping
from contextlib import contextmanager
from threading import Lock
from typing import TypeVar

from compose_spine.core.errors import (
    TaxonomyError,
    compose_error,
    configuration_error,
    container_error,
    daemon_error,
    health_check_error,
    image_build_error,
)
from compose_spine.core.logging import get_logger, log_context
from compose_spine.core.settings import ComposeSpineSettings, get_settings
from compose_spine.core.timing import TimingResult, as_utc, timed_block
from compose_spine.deploy.config import DeploymentConfig, ServiceSpec
from compose_spine.deploy.driver import DriverResult, RuntimeDriver
from compose_spine.deploy.graph import DependencyGraph
from compose_spine.deploy.health import ContainerHealth, HealthReporter, deployment_health
from compose_spine.deploy.results import OperationOutcome, ServiceResult, ServiceResultStatus
from compose_spine.deploy.scheduler import DependencyScheduler, TaskRecord, TaskState, call_with_timeout
from compose_spine.deploy.state import ServicePhase, ServiceState, StateStore
from compose_spine.deploy.telemetry import StructlogTelemetrySink, Telemetry, TelemetrySink

logger = get_logger(__name__)

T = TypeVar("T")

Selector = str | Iterable[str] | None

_RESTING_FOR_BUILD = (ServicePhase.UNKNOWN, ServicePhase.STOPPED)
_ALREADY_STOPPED = (ServicePhase.STOPPED, ServicePhase.REMOVED)
_NEEDS_VALIDATION = (ServicePhase.UNKNOWN, ServicePhase.STOPPED, ServicePhase.FAILED)

# (services touched, per-service results, errors)
_Body = Callable[[], tuple[tuple[str, ...], list[ServiceResult], list[TaxonomyError]]]


class ComposeManager:
    """Lifecycle manager for one deployment.

    Args:
        config: The deployment (project name, services, pass-through
            volume/network definitions).
        driver: Runtime driver performing the engine calls.
        telemetry: Sink receiving begin/end/error events. Defaults to
            ``StructlogTelemetrySink``.
        settings: Defaults for the keyword arguments below; ``get_settings()``
            when omitted.
        max_parallel: Services dispatched to the driver at once.
        driver_timeout: Seconds a single driver call may take.
        default_log_lines: ``get_logs()`` line count when none is given.
        warning_history: Advisory warnings retained in ``warnings``.
    """

    def __init__(
        self,
        config: DeploymentConfig,
        driver: RuntimeDriver,
        *,
        telemetry: TelemetrySink | None = None,
        settings: ComposeSpineSettings | None = None,
        max_parallel: int | None = None,
        driver_timeout: float | None = None,
        default_log_lines: int | None = None,
        warning_history: int | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._config = config
        self._driver = driver
        self._graph = DependencyGraph.from_config(config)
        self._specs: dict[str, ServiceSpec] = {}
        for spec in config.services:
            self._specs.setdefault(spec.name, spec)

        self._states = StateStore(self._graph.names)
        self._health = HealthReporter()
        self._telemetry = Telemetry(telemetry or StructlogTelemetrySink(), config.project_name)
        self._scheduler = DependencyScheduler(
            max_workers=max_parallel or settings.max_parallel,
            order={name: i for i, name in enumerate(self._graph.names)},
        )
        self._driver_timeout = driver_timeout if driver_timeout is not None else settings.driver_timeout_seconds
        self._default_log_lines = default_log_lines or settings.default_log_lines
        self._warnings: deque[TaxonomyError] = deque(maxlen=warning_history or settings.warning_history)
        self._warnings_lock = Lock()

        self._op_lock = Lock()
        self._active: str | None = None
        self._removed = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def project_name(self) -> str:
        return self._config.project_name

    @property
    def config(self) -> DeploymentConfig:
        return self._config

    @property
    def graph(self) -> DependencyGraph:
        return self._graph

    @property
    def removed(self) -> bool:
        return self._removed

    @property
    def warnings(self) -> tuple[TaxonomyError, ...]:
        """Warnings recorded by advisory reads, oldest first."""
        with self._warnings_lock:
            return tuple(self._warnings)

    def states(self) -> Mapping[str, ServiceState]:
        """Read-only snapshot of every service's state."""
        return self._states.snapshot()

    def health(self) -> ContainerHealth:
        """Deployment-wide health from the last observed service verdicts."""
        return deployment_health(s.health for s in self._states.snapshot().values())

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_configuration(self) -> bool:
        """Check the deployment is non-empty, fully resolved and acyclic.

        Returns ``True`` on success.

        Raises:
            TaxonomyError: ``configuration`` kind if invalid; ``daemon`` kind
                if the driver could not be asked.
        """
        names = self._graph.names
        timer = TimingResult(step="compose.validate")
        with log_context(project=self.project_name, operation="validate", span_id=timer.span_id):
            self._telemetry.begin("validate", names, timer)
            try:
                self._validate()
            except Exception as exc:
                timer.stop()
                self._telemetry.error("validate", exc)
                self._telemetry.end("validate", names, timer, "error")
                raise
            timer.stop()
            self._telemetry.end("validate", names, timer, "succeeded")
        return True

    def _validate(self) -> None:
        self._graph.validate()
        try:
            verdict = call_with_timeout(self._driver.validate_config, self._driver_timeout, self._config)
        except Exception as exc:
            raise daemon_error(
                "validate",
                f"driver could not validate configuration: {_describe(exc)}",
                {"project": self.project_name},
                cause=exc,
            ) from exc
        if not verdict.ok:
            raise configuration_error(
                "config",
                verdict.reason or "rejected by runtime driver",
                {"project": self.project_name},
            )

    # ------------------------------------------------------------------
    # Mutating operations
    # ------------------------------------------------------------------

    def build(self, selector: Selector = None) -> OperationOutcome:
        """Build images for the selected services (default: all).

        Services build concurrently. If any fail, the outcome carries a
        single ``image-build`` error naming every failed service.
        """
        def body():
            self._ensure_live("build")
            self._validate()
            selected = self._resolve(selector)
            records = self._scheduler.run(
                {name: set() for name in selected},
                self._build_one,
                succeeded=_result_ok,
            )
            results = self._collect(records, "build")
            failed = [r.service for r in results if r.status is ServiceResultStatus.FAILED]
            errors: list[TaxonomyError] = []
            if failed:
                errors.append(image_build_error(
                    ", ".join(failed),
                    f"{len(failed)} of {len(selected)} service build(s) failed",
                    {
                        "project": self.project_name,
                        "services": failed,
                        "reasons": {r.service: r.error.message for r in results if r.error},
                    },
                ))
            return selected, results, errors

        return self._run("build", selector, body)

    def start(self, selector: Selector = None) -> OperationOutcome:
        """Start the selected services (default: all) and their dependencies.

        Dependencies that are not already running or healthy are started
        first. Branches run concurrently. When a service fails, everything
        depending on it is reported as skipped and independent branches carry
        on. Per-service driver failures are ``daemon`` errors in the outcome.
        """
        def body():
            self._ensure_live("start")
            self._validate()
            selected = self._resolve(selector)
            return self._start_phase(selected, self._start_one)

        return self._run("start", selector, body)

    def stop(self, selector: Selector = None) -> OperationOutcome:
        """Stop the selected services (default: all), dependents first.

        Best-effort: a failed stop does not prevent the remaining services
        from being stopped. Stopping an already stopped service is a no-op.
        """
        def body():
            selected = self._resolve(selector)
            if self._removed:
                return selected, [self._noop(n, "deployment removed") for n in selected], []
            results, errors, _ = self._stop_phase(selected)
            return selected, results, errors

        return self._run("stop", selector, body)

    def restart(self, selector: Selector = None, *, in_place: bool = False) -> OperationOutcome:
        """Restart the selected services (default: all).

        By default a stop phase (dependents first) followed by a start phase
        (dependencies first). A service whose stop failed is still started,
        unless the driver reported it unreachable. With ``in_place=True`` the
        driver's own restart is used, in dependency order.
        """
        def body():
            self._ensure_live("restart")
            self._validate()
            selected = self._resolve(selector)
            if in_place:
                return self._start_phase(selected, self._restart_one, force=True)

            _, stop_errors, unreachable = self._stop_phase(selected)

            def start_after_stop(name: str) -> ServiceResult:
                if name in unreachable:
                    state = self._states.get(name)
                    return ServiceResult(
                        service=name,
                        status=ServiceResultStatus.FAILED,
                        phase=state.phase,
                        error=state.last_error,
                        detail="unreachable during stop phase",
                    )
                return self._start_one(name)

            touched, results, start_errors = self._start_phase(selected, start_after_stop)
            # The unreachable failure is already among the stop-phase errors.
            start_errors = [e for e in start_errors if e not in stop_errors]
            return touched, results, stop_errors + start_errors

        return self._run("restart", selector, body)

    def down(self, remove_volumes: bool = False) -> OperationOutcome:
        """Tear the deployment down.

        Stops every service (best-effort, dependents first), then asks the
        driver to remove all deployment resources, volumes included when
        ``remove_volumes`` is set. Every service ends up ``removed`` even
        when part of the teardown failed; the failures are in the outcome.
        """
        def body():
            names = self._graph.names
            if self._removed:
                return names, [self._noop(n, "deployment removed") for n in names], []

            results, errors, _ = self._stop_phase(names)
            try:
                removal = call_with_timeout(self._driver.remove_deployment, self._driver_timeout, remove_volumes)
            except Exception as exc:
                errors.append(daemon_error(
                    "down",
                    f"resource removal failed: {_describe(exc)}",
                    {"project": self.project_name, "remove_volumes": remove_volumes},
                    cause=exc,
                ))
            else:
                if not removal.ok:
                    errors.append(daemon_error(
                        "down",
                        removal.reason or "resource removal failed",
                        {
                            "project": self.project_name,
                            "remove_volumes": remove_volumes,
                            "failed_resources": list(removal.failed_resources),
                        },
                    ))

            for name in names:
                self._states.transition(name, ServicePhase.REMOVED)
                self._health.forget(name)
            self._removed = True
            results = [r.model_copy(update={"phase": ServicePhase.REMOVED}) for r in results]
            return names, results, errors

        return self._run("down", None, body)

    # ------------------------------------------------------------------
    # Advisory reads
    # ------------------------------------------------------------------

    def get_service_status(self, name: str) -> ServiceState | None:
        """Inspect one service and return a snapshot of its state.

        The driver's view wins over the cached one: a service the manager
        believes is up but the driver reports as not running drops to
        ``stopped`` and a ``container`` warning is recorded. For running
        services the health verdict (and the matching running/healthy/
        unhealthy phase) is updated; turning unhealthy records a
        ``health-check`` warning and sets ``last_error``.

        Never raises. Unknown or absent services and any failure while
        reading return ``None`` and record a ``container`` warning.
        """
        def read() -> ServiceState | None:
            spec = self._specs.get(name)
            if spec is None:
                self._warn("status", container_error("status", "service is not part of this deployment",
                                                     {"project": self.project_name}, container=name))
                return None
            inspection = call_with_timeout(self._driver.inspect_service, self._driver_timeout, name)
            if inspection is None:
                self._warn("status", container_error("status", "runtime reports no such service",
                                                     {"project": self.project_name}, container=name))
                return None

            if not inspection.running:
                return self._observe_exit(name, inspection.status, inspection.container_id)

            if spec.healthcheck is None or inspection.probe is None:
                return self._states.observe(name, self._health.current(spec), container_id=inspection.container_id)

            probe = inspection.probe
            previous = self._states.get(name).health
            verdict = self._health.observe(spec, probe)
            error = None
            if verdict is ContainerHealth.UNHEALTHY and previous is not ContainerHealth.UNHEALTHY:
                error = health_check_error(
                    name,
                    probe.error or f"{spec.healthcheck.retries} consecutive health probes failed",
                    {"project": self.project_name, "retries": spec.healthcheck.retries},
                    endpoint=probe.endpoint,
                )
                self._warn("status", error)
            return self._states.observe(
                name,
                verdict,
                checked_at=as_utc(probe.checked_at),
                container_id=inspection.container_id,
                error=error,
            )

        return self._advisory("status", name, read, None)

    def get_logs(self, name: str, line_count: int | None = None) -> str:
        """Return the last ``line_count`` lines of a service's output.

        Byte output from the driver is decoded as UTF-8, replacing invalid
        sequences. Never raises: failures return ``""`` and record a
        ``container`` warning.
        """
        def read() -> str:
            count = self._default_log_lines if line_count is None else line_count
            if isinstance(count, bool) or not isinstance(count, int) or count < 1:
                self._warn("logs", container_error("logs", f"invalid line count {count!r}",
                                                   {"project": self.project_name}, container=name))
                return ""
            if name not in self._specs:
                self._warn("logs", container_error("logs", "service is not part of this deployment",
                                                   {"project": self.project_name}, container=name))
                return ""
            text = call_with_timeout(self._driver.fetch_logs, self._driver_timeout, name, count)
            if isinstance(text, (bytes, bytearray)):
                text = bytes(text).decode("utf-8", errors="replace")
            lines = (text or "").splitlines()
            return "\n".join(lines[-count:])

        return self._advisory("logs", name, read, "")

    def _observe_exit(self, name: str, status: str | None, container_id: str | None) -> ServiceState:
        """Fold a "not running" inspection into the state store."""
        was = self._states.get(name).phase
        if was.is_up:
            self._health.forget(name)
            error = container_error(
                "status",
                f"container is no longer running (status: {status or 'unknown'})",
                {"project": self.project_name, "previous_phase": was.value},
                container=name,
            )
            self._warn("status", error)
            return self._states.observe(name, ContainerHealth.UNKNOWN, running=False,
                                        container_id=container_id, error=error)
        return self._states.observe(name, ContainerHealth.UNKNOWN, running=False, container_id=container_id)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _start_plan(self, selected: Iterable[str], *, force: bool = False) -> list[str]:
        """Selected services plus dependencies that are not already up."""
        selected = set(selected)
        wanted = self._graph.with_dependencies(selected)
        plan = []
        for name in self._graph.topological_order(wanted):
            if name in selected and force:
                plan.append(name)
            elif self._states.get(name).phase not in (ServicePhase.RUNNING, ServicePhase.HEALTHY):
                plan.append(name)
        return plan

    def _start_phase(
        self,
        selected: tuple[str, ...],
        action: Callable[[str], ServiceResult],
        *,
        force: bool = False,
    ) -> tuple[tuple[str, ...], list[ServiceResult], list[TaxonomyError]]:
        plan = self._start_plan(selected, force=force)
        already_up = [n for n in selected if n not in plan]
        records = self._scheduler.run(
            self._graph.prerequisites(plan),
            action,
            succeeded=_result_ok,
        )
        results = [self._noop(n, "already running") for n in already_up]
        results += self._collect(records, "start")
        touched = tuple(already_up) + tuple(plan)
        return touched, results, [r.error for r in results if r.error is not None]

    def _stop_phase(self, names: Iterable[str]) -> tuple[list[ServiceResult], list[TaxonomyError], set[str]]:
        records = self._scheduler.run(
            self._graph.prerequisites(names, reverse=True),
            self._stop_one,
            succeeded=_result_ok,
            skip_on_failure=False,
        )
        results = self._collect(records, "stop")
        unreachable = {
            r.service for r in results
            if r.error is not None and r.error.context.get("unreachable")
        }
        return results, [r.error for r in results if r.error is not None], unreachable

    # ------------------------------------------------------------------
    # Per-service actions (run on worker threads)
    # ------------------------------------------------------------------

    def _start_one(self, name: str) -> ServiceResult:
        return self._dispatch_start(name, "start", self._driver.start_services)

    def _restart_one(self, name: str) -> ServiceResult:
        return self._dispatch_start(name, "restart", self._driver.restart_services)

    def _dispatch_start(self, name: str, operation: str, method: Callable[..., Mapping[str, DriverResult]]) -> ServiceResult:
        with timed_block(f"{operation}.{name}") as timer:
            if self._states.get(name).phase in _NEEDS_VALIDATION:
                self._states.transition(name, ServicePhase.VALIDATING)
            self._states.transition(name, ServicePhase.STARTING)
            self._health.reset(name)
            result, cause = self._call_driver(method, name)

            if not result.ok:
                error = daemon_error(
                    operation,
                    result.reason or "runtime driver reported a failure",
                    {"project": self.project_name, "service": name, "unreachable": result.unreachable},
                    cause=cause,
                )
                state = self._states.transition(name, ServicePhase.FAILED, error=error)
                status = ServiceResultStatus.FAILED
            else:
                error = None
                state = self._states.transition(name, ServicePhase.RUNNING, container_id=result.container_id)
                status = ServiceResultStatus.SUCCEEDED
        return ServiceResult(
            service=name, status=status, phase=state.phase, error=error, duration_ms=timer.duration_ms,
        )

    def _stop_one(self, name: str) -> ServiceResult:
        current = self._states.get(name)
        if current.phase in _ALREADY_STOPPED:
            return self._noop(name, f"already {current.phase.value}")

        with timed_block(f"stop.{name}") as timer:
            self._states.transition(name, ServicePhase.STOPPING)
            result, cause = self._call_driver(self._driver.stop_services, name)
            if not result.ok:
                error = daemon_error(
                    "stop",
                    result.reason or "runtime driver reported a failure",
                    {"project": self.project_name, "service": name, "unreachable": result.unreachable},
                    cause=cause,
                )
                state = self._states.transition(name, ServicePhase.FAILED, error=error)
                status = ServiceResultStatus.FAILED
            else:
                error = None
                state = self._states.transition(name, ServicePhase.STOPPED)
                self._health.forget(name)
                status = ServiceResultStatus.SUCCEEDED
        return ServiceResult(
            service=name, status=status, phase=state.phase, error=error, duration_ms=timer.duration_ms,
        )

    def _build_one(self, name: str) -> ServiceResult:
        prior = self._states.get(name).phase
        with timed_block(f"build.{name}") as timer:
            if prior in _RESTING_FOR_BUILD:
                self._states.transition(name, ServicePhase.BUILDING)
            result, cause = self._call_driver(self._driver.build_images, name)

            if not result.ok:
                error = image_build_error(
                    name,
                    result.reason or "runtime driver reported a failure",
                    {"project": self.project_name, "service": name},
                    cause=cause,
                )
                if prior in _RESTING_FOR_BUILD:
                    state = self._states.transition(name, ServicePhase.FAILED, error=error)
                else:
                    state = self._states.transition(name, prior, error=error)
                status = ServiceResultStatus.FAILED
            else:
                error = None
                state = self._states.transition(name, prior)
                status = ServiceResultStatus.SUCCEEDED
        return ServiceResult(
            service=name, status=status, phase=state.phase, error=error, duration_ms=timer.duration_ms,
        )

    def _call_driver(
        self,
        method: Callable[..., Mapping[str, DriverResult]],
        name: str,
    ) -> tuple[DriverResult, BaseException | None]:
        """Call a batch driver method for one service, never raising."""
        try:
            results = call_with_timeout(method, self._driver_timeout, [name])
        except Exception as exc:
            logger.warning("compose.driver.call_failed", call=getattr(method, "__name__", "driver"),
                           service=name, error=_describe(exc))
            return DriverResult.failure(name, _describe(exc)), exc
        result = (results or {}).get(name)
        if result is None:
            return DriverResult.failure(name, "runtime driver returned no result for service"), None
        return result, None

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _run(self, operation: str, selector: Selector, body: _Body) -> OperationOutcome:
        requested = _requested(selector) or self._graph.names
        timer = TimingResult(step=f"compose.{operation}")
        with log_context(project=self.project_name, operation=operation, span_id=timer.span_id):
            self._telemetry.begin(operation, requested, timer)
            try:
                with self._exclusive(operation):
                    services, results, errors = body()
            except Exception as exc:
                timer.stop()
                self._telemetry.error(operation, exc)
                self._telemetry.end(operation, requested, timer, "error")
                raise
            timer.stop()

            outcome = OperationOutcome.from_results(
                operation=operation,
                project=self.project_name,
                services=services,
                results=results,
                errors=errors,
                started_at=timer.started_at,
                duration_ms=timer.duration_ms,
            )
            for status in ServiceResultStatus:
                timer.add_metric(status.value, sum(1 for r in results if r.status is status))
            timer.add_metric("errors", len(errors))
            for error in errors:
                self._telemetry.error(operation, error)
            self._telemetry.end(operation, services, timer, outcome.status.value)
        return outcome

    def _advisory(self, operation: str, name: str, read: Callable[[], T], fallback: T) -> T:
        """Run an advisory read; any failure becomes a warning and ``fallback``."""
        timer = TimingResult(step=f"compose.{operation}")
        with log_context(project=self.project_name, operation=operation, service=name, span_id=timer.span_id):
            self._telemetry.begin(operation, (name,), timer)
            try:
                value = read()
            except Exception as exc:
                self._warn(operation, container_error(
                    operation, f"could not read {operation}: {_describe(exc)}",
                    {"project": self.project_name}, container=name, cause=exc,
                ))
                value = fallback
            timer.stop()
            self._telemetry.end(operation, (name,), timer, "succeeded" if value else "empty")
        return value

    @contextmanager
    def _exclusive(self, operation: str):
        with self._op_lock:
            if self._active is not None:
                raise daemon_error(
                    operation,
                    f"operation '{self._active}' is already in progress",
                    {"project": self.project_name, "active_operation": self._active},
                )
            self._active = operation
        try:
            yield
        finally:
            with self._op_lock:
                self._active = None

    def _ensure_live(self, operation: str) -> None:
        if self._removed:
            raise compose_error(
                operation,
                "deployment has been torn down",
                {"project": self.project_name},
            )

    def _resolve(self, selector: Selector) -> tuple[str, ...]:
        """Selector -> service names in declaration order (empty means all)."""
        requested = _requested(selector)
        if not requested:
            return self._graph.names
        unknown = [n for n in requested if n not in self._graph]
        if unknown:
            raise configuration_error(
                "selector",
                f"unknown service(s): {', '.join(unknown)}",
                {"project": self.project_name, "unknown": unknown},
            )
        wanted = set(requested)
        return tuple(n for n in self._graph.names if n in wanted)

    def _collect(self, records: list[TaskRecord[ServiceResult]], operation: str) -> list[ServiceResult]:
        results = []
        for record in records:
            if record.state is TaskState.SKIPPED:
                blocked = ", ".join(record.blocked_by)
                results.append(ServiceResult(
                    service=record.name,
                    status=ServiceResultStatus.SKIPPED,
                    phase=self._states.get(record.name).phase,
                    detail=f"dependency did not {operation}: {blocked}",
                ))
            elif record.value is not None:
                results.append(record.value)
            else:
                # The action itself raised; treat as a failed driver interaction.
                exc = record.error
                error = daemon_error(
                    operation,
                    _describe(exc) if exc else "unexpected failure",
                    {"project": self.project_name, "service": record.name},
                    cause=exc,
                )
                state = self._states.get(record.name)
                if not state.phase.is_terminal:
                    state = self._states.transition(record.name, ServicePhase.FAILED, error=error)
                results.append(ServiceResult(
                    service=record.name,
                    status=ServiceResultStatus.FAILED,
                    phase=state.phase,
                    error=error,
                ))
        return results

    def _noop(self, name: str, detail: str) -> ServiceResult:
        return ServiceResult(
            service=name,
            status=ServiceResultStatus.NOOP,
            phase=self._states.get(name).phase,
            detail=detail,
        )

    def _warn(self, operation: str, warning: TaxonomyError) -> None:
        with self._warnings_lock:
            self._warnings.append(warning)
        self._telemetry.error(operation, warning)


def _requested(selector: Selector) -> tuple[str, ...]:
    if selector is None:
        return ()
    if isinstance(selector, str):
        return (selector,)
    return tuple(dict.fromkeys(selector))


def _result_ok(result: ServiceResult) -> bool:
    return result.ok


def _describe(exc: BaseException) -> str:
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


__all__ = ["ComposeManager", "Selector"]
