"""Tests for ComposeManager.

All engine calls go to FakeRuntimeDriver; no Docker required.
"""

from __future__ import annotations

import threading
import time
from datetime import UTC, datetime, timedelta

import pytest
import structlog

from compose_spine.core.errors import ErrorKind, TaxonomyError
from compose_spine.deploy.config import DeploymentConfig, HealthCheckSpec, ServiceSpec
from compose_spine.deploy.health import ContainerHealth
from compose_spine.deploy.results import OperationStatus, ServiceResultStatus
from compose_spine.deploy.state import ServicePhase


def phases(manager) -> dict[str, ServicePhase]:
    return {name: state.phase for name, state in manager.states().items()}


def wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        time.sleep(0.005)


# ===========================================================================
# Validation
# ===========================================================================


class TestValidateConfiguration:
    def test_valid(self, manager, driver):
        assert manager.validate_configuration() is True
        assert driver.validated == ["demo"]

    def test_cycle_is_configuration_error(self, make_manager):
        config = DeploymentConfig(project_name="loop", services=(
            ServiceSpec(name="a", depends_on=("b",)),
            ServiceSpec(name="b", depends_on=("a",)),
        ))
        with pytest.raises(TaxonomyError) as exc_info:
            make_manager(config).validate_configuration()
        assert exc_info.value.kind is ErrorKind.CONFIGURATION
        assert exc_info.value.retryable is False

    def test_unresolved_dependency(self, make_manager):
        config = DeploymentConfig(project_name="broken", services=(
            ServiceSpec(name="api", depends_on=("db",)),
        ))
        with pytest.raises(TaxonomyError, match="unknown service 'db'"):
            make_manager(config).validate_configuration()

    def test_empty_deployment(self, make_manager):
        with pytest.raises(TaxonomyError) as exc_info:
            make_manager(DeploymentConfig(project_name="empty")).validate_configuration()
        assert exc_info.value.kind is ErrorKind.CONFIGURATION

    def test_driver_rejection(self, manager, driver):
        driver.reject_config("network 'backend' not declared")
        with pytest.raises(TaxonomyError) as exc_info:
            manager.validate_configuration()
        assert exc_info.value.kind is ErrorKind.CONFIGURATION
        assert "backend" in exc_info.value.message

    def test_start_halts_on_invalid_config(self, make_manager, driver):
        config = DeploymentConfig(project_name="broken", services=(
            ServiceSpec(name="api", depends_on=("db",)),
        ))
        with pytest.raises(TaxonomyError):
            make_manager(config).start()
        assert driver.dispatched("start_services") == []


# ===========================================================================
# Start
# ===========================================================================


class TestStart:
    """start(): dependencies first, skip dependents of failures."""

    def test_demo_all_succeed(self, manager, driver):
        outcome = manager.start()

        assert outcome.ok
        assert outcome.status is OperationStatus.SUCCEEDED
        assert [r.service for r in outcome.results] == ["db", "api", "web"]
        assert all(r.status is ServiceResultStatus.SUCCEEDED for r in outcome.results)
        assert outcome.errors == ()
        assert manager.get_service_status("web").phase is ServicePhase.RUNNING

    def test_dependency_reaches_running_before_dependent_dispatched(self, manager, driver):
        driver.delay("start_services", "db", 0.03)
        driver.delay("start_services", "api", 0.03)
        manager.start()

        assert driver.seq_of("start_services", "db", "end") < driver.seq_of("start_services", "api")
        assert driver.seq_of("start_services", "api", "end") < driver.seq_of("start_services", "web")

    def test_failed_dependency_skips_dependents(self, manager, driver):
        driver.fail("start_services", "db", "port 5432 already allocated")
        outcome = manager.start()

        db = outcome.result_for("db")
        assert db.status is ServiceResultStatus.FAILED
        assert db.error.kind is ErrorKind.DAEMON
        assert db.error.retryable is True
        assert outcome.skipped == ["api", "web"]
        assert driver.dispatched("start_services") == ["db"]
        assert outcome.status is OperationStatus.FAILED
        assert len(outcome.errors) == 1
        assert not any(p.is_up for p in phases(manager).values())
        assert phases(manager)["db"] is ServicePhase.FAILED
        assert manager.states()["db"].last_error is db.error

    def test_independent_branch_proceeds(self, make_manager, diamond_config, driver):
        driver.fail("start_services", "db")
        outcome = make_manager(diamond_config).start()

        assert outcome.failed == ["db"]
        assert outcome.skipped == ["api"]
        assert set(outcome.succeeded) == {"cache", "worker"}
        assert outcome.status is OperationStatus.PARTIAL

    def test_selector_pulls_in_dependencies_only(self, manager, driver):
        outcome = manager.start("api")
        assert outcome.services == ("db", "api")
        assert driver.dispatched("start_services") == ["db", "api"]
        assert phases(manager)["web"] is ServicePhase.UNKNOWN

    def test_running_dependencies_not_restarted(self, manager, driver):
        manager.start("db")
        manager.start("web")
        assert driver.dispatched("start_services") == ["db", "api", "web"]

    def test_start_twice_is_noop(self, manager, driver):
        manager.start()
        outcome = manager.start()
        assert outcome.status is OperationStatus.NOOP
        assert outcome.noop == ["db", "api", "web"]
        assert driver.call_count("start_services") == 3

    def test_failed_service_recovers_on_retry(self, manager, driver):
        driver.fail("start_services", "db", times=1)
        assert manager.start().status is OperationStatus.FAILED
        outcome = manager.start()
        assert outcome.ok
        assert phases(manager) == {"db": ServicePhase.RUNNING, "api": ServicePhase.RUNNING, "web": ServicePhase.RUNNING}

    def test_driver_exception_becomes_daemon_error(self, manager, driver):
        boom = ConnectionError("docker.sock refused")
        driver.raise_on("start_services", "db", boom)
        outcome = manager.start()
        err = outcome.result_for("db").error
        assert err.kind is ErrorKind.DAEMON
        assert err.cause is boom
        assert "docker.sock refused" in err.message

    def test_missing_driver_result_is_failure(self, manager, driver):
        driver.omit("start_services", "web")
        outcome = manager.start()
        assert outcome.failed == ["web"]
        assert "no result" in outcome.result_for("web").error.message

    def test_timeout_is_daemon_error_and_other_branches_proceed(self, make_manager, diamond_config, driver):
        driver.delay("start_services", "db", 0.5)
        outcome = make_manager(diamond_config, driver_timeout=0.05).start()

        err = outcome.result_for("db").error
        assert err.kind is ErrorKind.DAEMON
        assert err.retryable is True
        assert "did not complete" in err.message
        assert set(outcome.succeeded) == {"cache", "worker"}
        assert outcome.skipped == ["api"]

    def test_unknown_selector_is_configuration_error(self, manager, driver):
        with pytest.raises(TaxonomyError) as exc_info:
            manager.start(["api", "nope"])
        assert exc_info.value.kind is ErrorKind.CONFIGURATION
        assert exc_info.value.context["unknown"] == ["nope"]
        assert driver.dispatched("start_services") == []

    def test_raise_for_errors(self, manager, driver):
        driver.fail("start_services", "db")
        outcome = manager.start()
        with pytest.raises(TaxonomyError) as exc_info:
            outcome.raise_for_errors()
        assert exc_info.value is outcome.errors[0]

    def test_outcome_serialises(self, manager):
        data = manager.start().to_dict()
        assert data["operation"] == "start"
        assert data["project"] == "demo"
        assert [r["status"] for r in data["results"]] == ["succeeded"] * 3


# ===========================================================================
# Stop / restart
# ===========================================================================


class TestStop:
    def test_reverse_order(self, manager, driver):
        manager.start()
        driver.delay("stop_services", "web", 0.02)
        outcome = manager.stop()

        assert outcome.ok
        assert driver.dispatched("stop_services") == ["web", "api", "db"]
        assert driver.seq_of("stop_services", "web", "end") < driver.seq_of("stop_services", "api")
        assert set(phases(manager).values()) == {ServicePhase.STOPPED}

    def test_stop_twice_is_noop(self, manager, driver):
        manager.start()
        manager.stop()
        outcome = manager.stop()

        assert outcome.status is OperationStatus.NOOP
        assert outcome.errors == ()
        assert set(outcome.noop) == {"db", "api", "web"}
        assert driver.call_count("stop_services") == 3

    def test_best_effort_continues_after_failure(self, manager, driver):
        manager.start()
        driver.fail("stop_services", "api", "container did not exit")
        outcome = manager.stop()

        assert outcome.failed == ["api"]
        assert "db" in outcome.succeeded
        assert [e.kind for e in outcome.errors] == [ErrorKind.DAEMON]
        assert phases(manager)["db"] is ServicePhase.STOPPED
        assert phases(manager)["api"] is ServicePhase.FAILED

    def test_selector_stops_only_selected(self, manager, driver):
        manager.start()
        manager.stop("db")
        assert driver.dispatched("stop_services") == ["db"]
        assert phases(manager)["api"] is ServicePhase.RUNNING


class TestRestart:
    def test_stop_phase_then_start_phase(self, manager, driver):
        manager.start()
        outcome = manager.restart()

        assert outcome.ok
        assert driver.dispatched("stop_services") == ["web", "api", "db"]
        assert driver.dispatched("start_services")[3:] == ["db", "api", "web"]
        last_stop_end = max(e.seq for e in driver.events if e.method == "stop_services")
        restart_begins = [
            e.seq for e in driver.events if e.method == "start_services" and e.phase == "begin"
        ][3:]
        assert last_stop_end < min(restart_begins)
        assert all(p is ServicePhase.RUNNING for p in phases(manager).values())

    def test_stop_failure_still_starts(self, manager, driver):
        manager.start()
        driver.fail("stop_services", "api", "timeout waiting for exit")
        outcome = manager.restart()

        assert outcome.result_for("api").status is ServiceResultStatus.SUCCEEDED
        assert outcome.status is OperationStatus.PARTIAL
        assert [e.kind for e in outcome.errors] == [ErrorKind.DAEMON]
        assert phases(manager)["api"] is ServicePhase.RUNNING

    def test_unreachable_stop_blocks_start(self, manager, driver):
        manager.start()
        driver.fail("stop_services", "api", "node unreachable", unreachable=True)
        outcome = manager.restart()

        assert outcome.result_for("api").status is ServiceResultStatus.FAILED
        assert outcome.result_for("web").status is ServiceResultStatus.SKIPPED
        assert outcome.result_for("db").status is ServiceResultStatus.SUCCEEDED
        assert driver.dispatched("start_services").count("api") == 1
        assert len(outcome.errors) == 1

    def test_in_place_uses_driver_restart(self, manager, driver):
        manager.start()
        outcome = manager.restart(in_place=True)

        assert outcome.ok
        assert driver.dispatched("restart_services") == ["db", "api", "web"]
        assert driver.dispatched("stop_services") == []

    def test_in_place_failure_skips_dependents(self, manager, driver):
        manager.start()
        driver.fail("restart_services", "api")
        outcome = manager.restart(in_place=True)
        assert outcome.failed == ["api"]
        assert outcome.skipped == ["web"]


# ===========================================================================
# Build
# ===========================================================================


class TestBuild:
    def test_all_succeed(self, manager, driver):
        outcome = manager.build()
        assert outcome.ok
        assert driver.built == {"db", "api", "web"}
        assert set(phases(manager).values()) == {ServicePhase.UNKNOWN}

    def test_one_failure_aggregates_single_image_build_error(self, manager, driver):
        driver.fail("build_images", "api", "COPY failed: no such file")
        outcome = manager.build()

        assert len(outcome.errors) == 1
        err = outcome.errors[0]
        assert err.kind is ErrorKind.IMAGE_BUILD
        assert err.status_code == 422
        assert err.retryable is True
        assert err.context["services"] == ["api"]
        assert outcome.result_for("db").status is ServiceResultStatus.SUCCEEDED
        assert outcome.result_for("web").status is ServiceResultStatus.SUCCEEDED
        assert outcome.status is OperationStatus.PARTIAL
        assert phases(manager)["api"] is ServicePhase.FAILED

    def test_build_of_running_service_keeps_phase(self, manager, driver):
        manager.start()
        driver.fail("build_images", "web")
        manager.build("web")
        state = manager.states()["web"]
        assert state.phase is ServicePhase.RUNNING
        assert state.last_error.kind is ErrorKind.IMAGE_BUILD

    def test_build_ignores_dependency_order(self, manager, driver):
        driver.fail("build_images", "db")
        outcome = manager.build()
        assert outcome.skipped == []
        assert set(driver.dispatched("build_images")) == {"db", "api", "web"}


# ===========================================================================
# Down
# ===========================================================================


class TestDown:
    def test_removes_everything(self, manager, driver):
        manager.start()
        outcome = manager.down(remove_volumes=True)

        assert outcome.ok
        assert driver.removed and driver.volumes_removed
        assert set(phases(manager).values()) == {ServicePhase.REMOVED}
        assert manager.removed

    def test_continues_after_stop_failure(self, manager, driver):
        manager.start()
        driver.fail("stop_services", "web")
        outcome = manager.down()

        assert set(driver.dispatched("stop_services")) == {"web", "api", "db"}
        assert driver.removed
        assert outcome.failed == ["web"]
        assert set(phases(manager).values()) == {ServicePhase.REMOVED}

    def test_partial_removal_reported(self, manager, driver):
        manager.start()
        driver.fail_removal("volume in use", ["pgdata"])
        outcome = manager.down(remove_volumes=True)

        assert [e.kind for e in outcome.errors] == [ErrorKind.DAEMON]
        assert outcome.errors[0].context["failed_resources"] == ["pgdata"]
        assert set(phases(manager).values()) == {ServicePhase.REMOVED}

    def test_removed_is_terminal(self, manager, driver):
        manager.down()
        for call in (manager.start, manager.build, manager.restart):
            with pytest.raises(TaxonomyError) as exc_info:
                call()
            assert exc_info.value.kind is ErrorKind.COMPOSE
        assert manager.stop().status is OperationStatus.NOOP
        assert manager.down().status is OperationStatus.NOOP
        assert driver.call_count("remove_deployment") == 1


# ===========================================================================
# Advisory reads
# ===========================================================================


class TestServiceStatus:
    def test_absent_service_returns_none(self, manager, driver):
        driver.make_absent("web")
        assert manager.get_service_status("web") is None
        warning = manager.warnings[-1]
        assert warning.kind is ErrorKind.CONTAINER
        assert warning.severity.value == "warning"

    def test_unknown_name_returns_none(self, manager):
        assert manager.get_service_status("nope") is None
        assert manager.warnings[-1].context["container"] == "nope"

    def test_driver_failure_returns_none(self, manager, driver):
        driver.raise_on("inspect_service", None, OSError("daemon gone"))
        assert manager.get_service_status("db") is None
        assert manager.warnings[-1].cause is not None

    def test_returns_snapshot(self, manager):
        manager.start()
        state = manager.get_service_status("db")
        with pytest.raises(AttributeError):
            state.phase = ServicePhase.STOPPED
        assert state.container_id == "fake-db"
        assert state.last_checked is not None

    def test_health_verdicts(self, make_manager, healthy_config, driver):
        manager = make_manager(healthy_config)
        manager.start()
        assert manager.get_service_status("db").phase is ServicePhase.RUNNING

        driver.push_probe("db", healthy=True)
        state = manager.get_service_status("db")
        assert state.phase is ServicePhase.HEALTHY
        assert state.health is ContainerHealth.HEALTHY
        assert manager.health() is ContainerHealth.HEALTHY

        driver.push_probe("db", healthy=False)
        driver.push_probe("db", healthy=False)
        manager.get_service_status("db")
        state = manager.get_service_status("db")
        assert state.phase is ServicePhase.UNHEALTHY
        assert manager.health() is ContainerHealth.UNHEALTHY

    def test_never_raises_after_down(self, manager):
        manager.down()
        assert manager.get_service_status("db") is None

    def test_exited_container_drops_to_stopped(self, manager, driver):
        manager.start()
        driver.running.discard("web")

        state = manager.get_service_status("web")
        assert state.phase is ServicePhase.STOPPED
        assert state.health is ContainerHealth.UNKNOWN
        warning = manager.warnings[-1]
        assert warning.kind is ErrorKind.CONTAINER
        assert "no longer running" in warning.message
        assert warning.context["previous_phase"] == "running"
        assert state.last_error is warning
        # Once stopped, further reads do not warn again.
        manager.get_service_status("web")
        assert len(manager.warnings) == 1

    def test_start_after_exit_redispatches(self, manager, driver):
        manager.start()
        driver.running.discard("web")
        manager.get_service_status("web")
        outcome = manager.start("web")
        assert outcome.result_for("web").status is ServiceResultStatus.SUCCEEDED
        assert driver.dispatched("start_services").count("web") == 2

    def test_turning_unhealthy_records_health_check_warning(self, make_manager, healthy_config, driver):
        manager = make_manager(healthy_config)
        manager.start()
        driver.push_probe("db", healthy=False, error="connection refused")
        assert manager.get_service_status("db").phase is ServicePhase.RUNNING
        assert manager.warnings == ()

        driver.push_probe("db", healthy=False, error="connection refused")
        state = manager.get_service_status("db")
        assert state.phase is ServicePhase.UNHEALTHY
        warning = manager.warnings[-1]
        assert warning.kind is ErrorKind.HEALTH_CHECK
        assert warning.context["service"] == "db"
        assert "connection refused" in warning.message
        assert state.last_error is warning

        # Staying unhealthy does not repeat the warning.
        driver.push_probe("db", healthy=False)
        manager.get_service_status("db")
        assert len(manager.warnings) == 1

    def test_naive_health_check_times_are_read_as_utc(self, make_manager, driver):
        config = DeploymentConfig(
            project_name="grace",
            services=(
                ServiceSpec(
                    name="db",
                    image="postgres:16",
                    healthcheck=HealthCheckSpec(test="pg_isready", retries=1, start_period=30.0),
                ),
            ),
        )
        manager = make_manager(config)
        manager.start()
        now = datetime.now(UTC).replace(tzinfo=None)

        driver.push_probe("db", healthy=False, checked_at=now)
        state = manager.get_service_status("db")
        assert state.health is ContainerHealth.STARTING
        assert state.last_checked.tzinfo is not None

        driver.push_probe("db", healthy=False, checked_at=now + timedelta(seconds=60))
        assert manager.get_service_status("db").health is ContainerHealth.UNHEALTHY

    def test_malformed_inspection_returns_none(self, manager, driver, monkeypatch):
        manager.start()
        monkeypatch.setattr(driver, "inspect_service", lambda name: object())
        assert manager.get_service_status("db") is None
        warning = manager.warnings[-1]
        assert warning.kind is ErrorKind.CONTAINER
        assert isinstance(warning.cause, AttributeError)


class TestLogs:
    def test_trims_to_line_count(self, manager, driver):
        driver.set_logs("api", "\n".join(f"line {i}" for i in range(1, 201)))
        assert manager.get_logs("api", 3) == "line 198\nline 199\nline 200"

    def test_default_line_count(self, manager, driver):
        driver.set_logs("api", "\n".join(f"line {i}" for i in range(1, 201)))
        lines = manager.get_logs("api").splitlines()
        assert len(lines) == 100
        assert lines[0] == "line 101"

    def test_failure_returns_empty(self, manager, driver):
        driver.raise_on("fetch_logs", "api")
        assert manager.get_logs("api") == ""
        assert manager.warnings[-1].kind is ErrorKind.CONTAINER

    @pytest.mark.parametrize("count", [0, -5, "10", True])
    def test_invalid_count_returns_empty(self, manager, count):
        assert manager.get_logs("api", count) == ""
        assert "invalid line count" in manager.warnings[-1].message

    def test_bytes_output_is_decoded(self, manager, driver):
        driver.set_logs("api", b"line1\nline2 \xff")
        assert manager.get_logs("api", 1) == "line2 \ufffd"
        assert manager.warnings == ()

    def test_unexpected_output_returns_empty(self, manager, driver, monkeypatch):
        monkeypatch.setattr(driver, "fetch_logs", lambda name, count: 42)
        assert manager.get_logs("api") == ""
        assert manager.warnings[-1].kind is ErrorKind.CONTAINER
        assert "could not read logs" in manager.warnings[-1].message

    def test_warning_history_bounded(self, make_manager, demo_config):
        manager = make_manager(demo_config, warning_history=2)
        for _ in range(5):
            manager.get_logs("nope")
        assert len(manager.warnings) == 2


# ===========================================================================
# Concurrency and telemetry
# ===========================================================================


class TestConcurrency:
    def test_overlapping_operation_rejected(self, manager, driver):
        driver.delay("start_services", "db", 0.3)
        worker = threading.Thread(target=manager.start)
        worker.start()
        wait_until(lambda: driver.dispatched("start_services") == ["db"])

        with pytest.raises(TaxonomyError) as exc_info:
            manager.stop()
        assert exc_info.value.kind is ErrorKind.DAEMON
        assert exc_info.value.retryable is True

        # Advisory reads are not blocked by the running operation.
        assert manager.get_service_status("db") is not None
        worker.join(timeout=5)
        assert phases(manager)["web"] is ServicePhase.RUNNING

    def test_states_snapshot_does_not_change(self, manager):
        before = manager.states()
        manager.start()
        assert before["db"].phase is ServicePhase.UNKNOWN
        assert manager.states()["db"].phase is ServicePhase.RUNNING


class TestTelemetry:
    def test_begin_and_end_events(self, manager, sink):
        manager.start()
        assert sink.names() == ["compose.start.begin", "compose.start.end"]
        end = sink.of("compose.start.end")[0].fields
        assert end["operation"] == "start"
        assert end["project"] == "demo"
        assert end["services"] == ["db", "api", "web"]
        assert end["outcome"] == "succeeded"
        assert end["duration_ms"] >= 0

    def test_error_event_per_taxonomy_error(self, manager, driver, sink):
        driver.fail("start_services", "db")
        manager.start()
        errors = sink.of("compose.error")
        assert len(errors) == 1
        fields = errors[0].fields
        assert fields["code"] == "docker/daemon"
        assert fields["status_code"] == 503
        assert fields["retryable"] is True
        assert fields["help"]
        assert fields["docs"].endswith("/daemon")
        assert sink.of("compose.start.end")[0].fields["outcome"] == "failed"

    def test_end_event_emitted_when_operation_raises(self, manager, sink):
        with pytest.raises(TaxonomyError):
            manager.start("nope")
        assert sink.names() == ["compose.start.begin", "compose.error", "compose.start.end"]
        assert sink.of("compose.start.end")[0].fields["outcome"] == "error"

    def test_advisory_reads_emit_events(self, manager, sink):
        manager.get_logs("nope")
        assert sink.names() == ["compose.logs.begin", "compose.error", "compose.logs.end"]
        assert sink.of("compose.error")[0].fields["severity"] == "warning"

    def test_events_share_span_and_carry_counts(self, manager, driver, sink):
        driver.fail("start_services", "api")
        manager.start()
        begin = sink.of("compose.start.begin")[0].fields
        end = sink.of("compose.start.end")[0].fields
        assert begin["span_id"] == end["span_id"]
        assert (end["succeeded"], end["failed"], end["skipped"], end["noop"]) == (1, 1, 1, 0)
        assert end["errors"] == 1

    def test_driver_calls_run_in_operation_log_context(self, manager, driver, sink, monkeypatch):
        seen = []
        start_services = driver.start_services

        def recording_start(names):
            seen.append(structlog.contextvars.get_contextvars())
            return start_services(names)

        monkeypatch.setattr(driver, "start_services", recording_start)
        manager.start()

        span_id = sink.of("compose.start.begin")[0].fields["span_id"]
        assert len(seen) == 3
        assert all(fields == {"project": "demo", "operation": "start", "span_id": span_id} for fields in seen)
        assert structlog.contextvars.get_contextvars() == {}

    def test_broken_sink_does_not_break_operation(self, make_manager, demo_config):
        def broken(event, fields):
            raise RuntimeError("sink down")

        outcome = make_manager(demo_config, telemetry=broken).start()
        assert outcome.ok
