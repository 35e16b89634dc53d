"""Compose deployment lifecycle.

::

    config.py     DeploymentConfig, ServiceSpec, HealthCheckSpec
    graph.py      DependencyGraph (validation, topological order)
    state.py      ServicePhase state machine, ServiceState snapshots
    health.py     ContainerHealth, HealthCheckResult, HealthReporter
    driver.py     RuntimeDriver protocol and result types
    scheduler.py  DependencyScheduler, call_with_timeout
    results.py    OperationOutcome, ServiceResult
    telemetry.py  Telemetry sinks
    manager.py    ComposeManager
    testing.py    FakeRuntimeDriver
"""

from compose_spine.deploy.config import DeploymentConfig, HealthCheckSpec, ServiceSpec, parse_duration
from compose_spine.deploy.driver import (
    DriverResult,
    RemovalResult,
    RuntimeDriver,
    ServiceInspection,
    ValidationResult,
)
from compose_spine.deploy.graph import DependencyGraph
from compose_spine.deploy.health import ContainerHealth, HealthCheckResult, HealthReporter, deployment_health
from compose_spine.deploy.manager import ComposeManager
from compose_spine.deploy.results import (
    OperationOutcome,
    OperationStatus,
    ServiceResult,
    ServiceResultStatus,
)
from compose_spine.deploy.scheduler import DependencyScheduler, DriverCallTimeout, call_with_timeout
from compose_spine.deploy.state import ServicePhase, ServiceState, StateStore
from compose_spine.deploy.telemetry import RecordingTelemetrySink, StructlogTelemetrySink, TelemetrySink

__all__ = [
    "ComposeManager",
    "ContainerHealth",
    "DependencyGraph",
    "DependencyScheduler",
    "DeploymentConfig",
    "DriverCallTimeout",
    "DriverResult",
    "HealthCheckResult",
    "HealthCheckSpec",
    "HealthReporter",
    "OperationOutcome",
    "OperationStatus",
    "RecordingTelemetrySink",
    "RemovalResult",
    "RuntimeDriver",
    "ServiceInspection",
    "ServicePhase",
    "ServiceResult",
    "ServiceResultStatus",
    "ServiceSpec",
    "ServiceState",
    "StateStore",
    "StructlogTelemetrySink",
    "TelemetrySink",
    "ValidationResult",
    "call_with_timeout",
    "deployment_health",
    "parse_duration",
]
