"""Per-service lifecycle state.

.. code-block:: text

    unknown ─▶ validating ─▶ starting ─▶ running ◀─▶ healthy / unhealthy
       │            │                        │
       └──▶ building ◀── stopped ◀─ stopping ◀┘

    any ──▶ failed        (recoverable: validating / starting / stopping)
    any ──▶ removed       (terminal, via down)

    running / healthy / unhealthy ──▶ stopped   (status read finds the container exited)

``ServiceState`` values are frozen; the store swaps in a new value on every
transition, so snapshots handed to callers never change underneath them.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from threading import Lock
from types import MappingProxyType
from typing import Any

from compose_spine.core.errors import TaxonomyError, compose_error
from compose_spine.core.timing import utc_now
from compose_spine.deploy.health import ContainerHealth


class ServicePhase(str, Enum):
    """Lifecycle phase of one service instance."""

    UNKNOWN = "unknown"
    VALIDATING = "validating"
    BUILDING = "building"
    STARTING = "starting"
    RUNNING = "running"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    STOPPING = "stopping"
    STOPPED = "stopped"
    REMOVED = "removed"
    FAILED = "failed"

    @property
    def is_up(self) -> bool:
        """Container is running (health verdict aside)."""
        return self in _UP

    @property
    def is_terminal(self) -> bool:
        return self is ServicePhase.REMOVED


_UP = frozenset({ServicePhase.RUNNING, ServicePhase.HEALTHY, ServicePhase.UNHEALTHY})

P = ServicePhase
_TRANSITIONS: Mapping[ServicePhase, frozenset[ServicePhase]] = MappingProxyType({
    P.UNKNOWN: frozenset({P.VALIDATING, P.BUILDING, P.STARTING, P.STOPPING, P.STOPPED}),
    P.VALIDATING: frozenset({P.STARTING, P.BUILDING}),
    P.BUILDING: frozenset({P.UNKNOWN, P.STOPPED, P.STARTING}),
    P.STARTING: frozenset({P.RUNNING, P.HEALTHY, P.UNHEALTHY}),
    P.RUNNING: frozenset({P.HEALTHY, P.UNHEALTHY, P.STOPPING, P.STARTING}),
    P.HEALTHY: frozenset({P.RUNNING, P.UNHEALTHY, P.STOPPING, P.STARTING}),
    P.UNHEALTHY: frozenset({P.RUNNING, P.HEALTHY, P.STOPPING, P.STARTING}),
    P.STOPPING: frozenset({P.STOPPED}),
    P.STOPPED: frozenset({P.VALIDATING, P.BUILDING, P.STARTING}),
    P.FAILED: frozenset({P.VALIDATING, P.STARTING, P.STOPPING, P.STOPPED}),
    P.REMOVED: frozenset(),
})
del P


def can_transition(current: ServicePhase, target: ServicePhase) -> bool:
    if current is ServicePhase.REMOVED:
        return False
    if target in (ServicePhase.FAILED, ServicePhase.REMOVED):
        return True
    return target in _TRANSITIONS[current]


@dataclass(frozen=True)
class ServiceState:
    """Snapshot of one service's runtime state."""

    name: str
    phase: ServicePhase = ServicePhase.UNKNOWN
    health: ContainerHealth = ContainerHealth.UNKNOWN
    last_error: TaxonomyError | None = None
    last_checked: datetime | None = None
    container_id: str | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "phase": self.phase.value,
            "health": self.health.value,
            "last_error": self.last_error.to_dict() if self.last_error else None,
            "last_checked": self.last_checked.isoformat() if self.last_checked else None,
            "container_id": self.container_id,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class StateStore:
    """Lock-guarded map of service name to ``ServiceState``.

    The lock is only held while swapping values, never across driver calls.
    """

    def __init__(self, names: Iterable[str]) -> None:
        self._lock = Lock()
        self._states = {name: ServiceState(name=name) for name in names}

    def get(self, name: str) -> ServiceState:
        with self._lock:
            return self._states[name]

    def snapshot(self) -> Mapping[str, ServiceState]:
        with self._lock:
            return MappingProxyType(dict(self._states))

    def transition(
        self,
        name: str,
        phase: ServicePhase,
        *,
        error: TaxonomyError | None = None,
        container_id: str | None = None,
    ) -> ServiceState:
        """Move ``name`` to ``phase``.

        Raises
        ------
        TaxonomyError
            ``compose`` kind for a transition the state machine forbids.
        """
        with self._lock:
            current = self._states[name]
            if current.phase is phase and error is None:
                return current
            if current.phase is not phase and not can_transition(current.phase, phase):
                raise compose_error(
                    "transition",
                    f"service '{name}' cannot move from {current.phase.value} to {phase.value}",
                    {"service": name, "from": current.phase.value, "to": phase.value},
                )
            changes: dict[str, Any] = {"phase": phase, "updated_at": utc_now()}
            if error is not None:
                changes["last_error"] = error
            if container_id is not None:
                changes["container_id"] = container_id
            if phase in (ServicePhase.STOPPED, ServicePhase.REMOVED):
                changes["health"] = ContainerHealth.UNKNOWN
            updated = replace(current, **changes)
            self._states[name] = updated
            return updated

    def observe(
        self,
        name: str,
        health: ContainerHealth,
        *,
        running: bool = True,
        checked_at: datetime | None = None,
        container_id: str | None = None,
        error: TaxonomyError | None = None,
    ) -> ServiceState:
        """Record what the driver reports about a service.

        Running services move between running, healthy and unhealthy to
        match the verdict. One the driver reports as not running any more
        drops to stopped with its health reset. Other phases only get the
        cached health updated.
        """
        with self._lock:
            current = self._states[name]
            if not running:
                health = ContainerHealth.UNKNOWN
            changes: dict[str, Any] = {"health": health, "last_checked": checked_at or utc_now()}
            if container_id is not None:
                changes["container_id"] = container_id
            if error is not None:
                changes["last_error"] = error
            if current.phase.is_up:
                phase = _phase_for(health) if running else ServicePhase.STOPPED
                if phase is not current.phase:
                    changes["phase"] = phase
                    changes["updated_at"] = utc_now()
            updated = replace(current, **changes)
            self._states[name] = updated
            return updated


def _phase_for(health: ContainerHealth) -> ServicePhase:
    if health is ContainerHealth.HEALTHY:
        return ServicePhase.HEALTHY
    if health is ContainerHealth.UNHEALTHY:
        return ServicePhase.UNHEALTHY
    return ServicePhase.RUNNING


__all__ = [
    "ServicePhase",
    "ServiceState",
    "StateStore",
    "can_transition",
]
