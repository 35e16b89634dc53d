"""Runtime driver capability.

The manager never talks to a container engine itself. It consumes a
``RuntimeDriver``: anything implementing the methods below (a Docker SDK
adapter, a ``docker compose`` CLI wrapper, or ``FakeRuntimeDriver`` in tests).

.. code-block:: text

    RuntimeDriver Protocol
    ┌──────────────────────────────────────────────────────────────────┐
    │  validate_config(config)         → ValidationResult              │
    │  start_services(names)           → {name: DriverResult}          │
    │  stop_services(names)            → {name: DriverResult}          │
    │  build_images(names)             → {name: DriverResult}          │
    │  restart_services(names)         → {name: DriverResult}          │
    │  remove_deployment(remove_volumes) → RemovalResult               │
    │  inspect_service(name)           → ServiceInspection | None      │
    │  fetch_logs(name, line_count)    → str | bytes (UTF-8)           │
    └──────────────────────────────────────────────────────────────────┘

Contract the manager relies on:
    - Any call may raise. Raised exceptions are classified by the manager,
      drivers do not need to raise ``TaxonomyError``.
    - Batch calls may partially fail. A name missing from the returned
      mapping counts as a failure for that service.
    - ``DriverResult.unreachable`` marks a service the engine cannot reach
      at all (container gone, node down). A restart does not attempt to
      start a service whose stop came back unreachable.
    - Calls are not assumed idempotent.

Tags:
    driver, runtime, protocol, docker, compose
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from compose_spine.deploy.config import DeploymentConfig
from compose_spine.deploy.health import HealthCheckResult


@dataclass(frozen=True)
class DriverResult:
    """Per-service outcome of a batch driver call."""

    service: str
    ok: bool
    reason: str | None = None
    unreachable: bool = False
    container_id: str | None = None

    @classmethod
    def success(cls, service: str, container_id: str | None = None) -> DriverResult:
        return cls(service=service, ok=True, container_id=container_id)

    @classmethod
    def failure(cls, service: str, reason: str, *, unreachable: bool = False) -> DriverResult:
        return cls(service=service, ok=False, reason=reason, unreachable=unreachable)


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    reason: str | None = None


@dataclass(frozen=True)
class RemovalResult:
    """Outcome of tearing down deployment resources."""

    ok: bool
    reason: str | None = None
    failed_resources: tuple[str, ...] = ()


@dataclass(frozen=True)
class ServiceInspection:
    """What the engine reports about one service's container."""

    service: str
    running: bool
    container_id: str | None = None
    status: str | None = None
    """Engine status string (``"Up 3 minutes"``, ``"exited (0)"``)."""
    probe: HealthCheckResult | None = None
    """Latest health probe, when the service has a health check."""


@runtime_checkable
class RuntimeDriver(Protocol):
    """Capability through which the manager drives a container engine."""

    def validate_config(self, config: DeploymentConfig) -> ValidationResult: ...

    def start_services(self, names: Sequence[str]) -> Mapping[str, DriverResult]: ...

    def stop_services(self, names: Sequence[str]) -> Mapping[str, DriverResult]: ...

    def build_images(self, names: Sequence[str]) -> Mapping[str, DriverResult]: ...

    def restart_services(self, names: Sequence[str]) -> Mapping[str, DriverResult]: ...

    def remove_deployment(self, remove_volumes: bool) -> RemovalResult: ...

    def inspect_service(self, name: str) -> ServiceInspection | None: ...

    def fetch_logs(self, name: str, line_count: int) -> str | bytes: ...


__all__ = [
    "DriverResult",
    "RemovalResult",
    "RuntimeDriver",
    "ServiceInspection",
    "ValidationResult",
]
