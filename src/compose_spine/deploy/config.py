"""Deployment configuration models for compose-spine.

A deployment is a project name plus an ordered set of ``ServiceSpec``
objects. Specs are frozen dataclasses: they are loaded once and never
mutated. ``DeploymentConfig`` is a Pydantic v2 model wrapping them together
with the opaque volume/network definitions handed through to the driver.

Key Concepts:
    HealthCheckSpec: Probe command, interval, timeout, retries, start period.
        Durations are stored as seconds; compose duration strings
        (``"1m30s"``) are converted by ``parse_duration()``.
    ServiceSpec: One service (image, ports, env, volumes, depends_on,
        networks, healthcheck, build context).
    DeploymentConfig: Project name + services + pass-through definitions.
        ``from_compose_dict()`` accepts an already-parsed compose mapping.

Architecture Decisions:
    - Frozen dataclasses for specs (as the backend/service registries are):
      specs are declarations, not runtime state.
    - Structural problems (unknown dependencies, cycles, duplicates) are
      *not* rejected here; ``DependencyGraph.validate()`` reports them as
      ``configuration`` errors when the manager validates.
    - Malformed input that cannot even be represented (a duration of
      ``"soon"``, ``services`` that is not a mapping) fails at load time with
      a ``configuration`` error.

Tags:
    config, compose, services, healthcheck, pydantic, dataclass
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from compose_spine.core.errors import configuration_error

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str | float | int | None, field_name: str = "duration") -> float | None:
    """Convert a compose duration to seconds.

    Accepts numbers (already seconds), and Go-style duration strings as used
    by compose files: ``"10s"``, ``"1m30s"``, ``"500ms"``, ``"2h"``.

    Raises
    ------
    TaxonomyError
        ``configuration`` kind if the value cannot be parsed or is negative.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise configuration_error(field_name, f"expected a duration, got {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise configuration_error(field_name, f"duration must not be negative: {value!r}")
        return float(value)

    text = str(value).strip()
    if not text:
        raise configuration_error(field_name, "empty duration")

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise configuration_error(field_name, f"invalid duration {value!r}")
    return total


@dataclass(frozen=True)
class HealthCheckSpec:
    """Health-check descriptor for a service.

    Mirrors the compose ``healthcheck`` block. Durations are seconds.
    """

    test: tuple[str, ...] | str
    """Probe command (``["CMD", "pg_isready"]`` or a shell string)."""

    interval: float = 30.0
    timeout: float = 30.0
    retries: int = 3

    start_period: float | None = None
    """Grace period during which failing probes do not mark the service unhealthy."""

    def __post_init__(self) -> None:
        if not isinstance(self.test, str):
            object.__setattr__(self, "test", tuple(self.test))

    @property
    def probe(self) -> str:
        """Probe command rendered as a single string (for reporting)."""
        if isinstance(self.test, str):
            return self.test
        return " ".join(self.test)

    @classmethod
    def from_mapping(cls, service: str, data: Mapping[str, Any]) -> HealthCheckSpec:
        prefix = f"services.{service}.healthcheck"
        if "test" not in data:
            raise configuration_error(f"{prefix}.test", "health check requires a probe command")
        retries = data.get("retries", 3)
        if not isinstance(retries, int) or isinstance(retries, bool) or retries < 1:
            raise configuration_error(f"{prefix}.retries", f"must be a positive integer, got {retries!r}")
        test = data["test"]
        return cls(
            test=test if isinstance(test, str) else tuple(str(part) for part in test),
            interval=parse_duration(data.get("interval", 30.0), f"{prefix}.interval") or 0.0,
            timeout=parse_duration(data.get("timeout", 30.0), f"{prefix}.timeout") or 0.0,
            retries=retries,
            start_period=parse_duration(data.get("start_period"), f"{prefix}.start_period"),
        )


@dataclass(frozen=True)
class ServiceSpec:
    """Declared, immutable definition of one service within a deployment."""

    name: str
    """Unique key within the deployment."""

    image: str | None = None
    """Image reference. May be omitted for build-only services."""

    container_name: str | None = None

    ports: tuple[str, ...] = ()
    """Port mappings (``"8080:80"``)."""

    environment: Mapping[str, str] = field(default_factory=dict)

    volumes: tuple[str, ...] = ()
    """Volume mounts (``"pgdata:/var/lib/postgresql/data"``)."""

    depends_on: tuple[str, ...] = ()
    """Names of services that must be up before this one starts."""

    networks: tuple[str, ...] = ()

    healthcheck: HealthCheckSpec | None = None

    build_context: str | None = None
    """Build context directory, when the image is built locally."""

    dockerfile: str | None = None

    def __post_init__(self) -> None:
        for name in ("ports", "volumes", "depends_on", "networks"):
            object.__setattr__(self, name, tuple(getattr(self, name)))
        object.__setattr__(self, "environment", dict(self.environment))

    @property
    def buildable(self) -> bool:
        return self.build_context is not None

    @classmethod
    def from_mapping(cls, name: str, data: Mapping[str, Any] | None) -> ServiceSpec:
        """Build a spec from one entry of a compose ``services`` mapping."""
        data = data or {}
        if not isinstance(data, Mapping):
            raise configuration_error(f"services.{name}", "service definition must be a mapping")

        build = data.get("build")
        build_context: str | None = None
        dockerfile: str | None = None
        if isinstance(build, str):
            build_context = build
        elif isinstance(build, Mapping):
            build_context = str(build.get("context", "."))
            dockerfile = build.get("dockerfile")

        healthcheck = None
        raw_health = data.get("healthcheck")
        if raw_health is not None and not isinstance(raw_health, Mapping):
            raise configuration_error(f"services.{name}.healthcheck", "must be a mapping")
        if raw_health and not raw_health.get("disable", False):
            healthcheck = HealthCheckSpec.from_mapping(name, raw_health)

        return cls(
            name=name,
            image=data.get("image"),
            container_name=data.get("container_name"),
            ports=tuple(str(p) for p in data.get("ports", ())),
            environment=_normalize_environment(name, data.get("environment")),
            volumes=tuple(str(v) for v in data.get("volumes", ())),
            depends_on=_normalize_depends_on(name, data.get("depends_on")),
            networks=_normalize_networks(data.get("networks")),
            healthcheck=healthcheck,
            build_context=build_context,
            dockerfile=dockerfile,
        )


def _normalize_environment(service: str, env: Any) -> dict[str, str]:
    if env is None:
        return {}
    if isinstance(env, Mapping):
        return {str(k): "" if v is None else str(v) for k, v in env.items()}
    if isinstance(env, (list, tuple)):
        result: dict[str, str] = {}
        for entry in env:
            key, _, value = str(entry).partition("=")
            result[key] = value
        return result
    raise configuration_error(f"services.{service}.environment", "must be a mapping or a list")


def _normalize_depends_on(service: str, deps: Any) -> tuple[str, ...]:
    # Long form: {db: {condition: service_healthy}}
    if deps is None:
        return ()
    if isinstance(deps, Mapping):
        return tuple(str(d) for d in deps)
    if isinstance(deps, (list, tuple)):
        return tuple(str(d) for d in deps)
    raise configuration_error(f"services.{service}.depends_on", "must be a list or a mapping")


def _normalize_networks(networks: Any) -> tuple[str, ...]:
    if not networks:
        return ()
    return tuple(str(n) for n in networks)


class DeploymentConfig(BaseModel):
    """Configuration for one deployment (a compose project).

    Example::

        config = DeploymentConfig(
            project_name="demo",
            services=[
                ServiceSpec(name="db", image="postgres:16"),
                ServiceSpec(name="api", image="demo/api", depends_on=("db",)),
            ],
        )
    """

    model_config = ConfigDict(frozen=True)

    project_name: str = Field(min_length=1, description="Compose project name")
    services: tuple[ServiceSpec, ...] = Field(
        default=(),
        description="Service specs in declaration order",
    )
    volumes: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description="Named volume definitions (passed through to the driver)",
    )
    networks: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description="Named network definitions (passed through to the driver)",
    )
    environment: dict[str, str] = Field(default_factory=dict)
    version: str | None = None

    @property
    def service_names(self) -> tuple[str, ...]:
        return tuple(s.name for s in self.services)

    def get_service(self, name: str) -> ServiceSpec | None:
        for spec in self.services:
            if spec.name == name:
                return spec
        return None

    @classmethod
    def from_compose_dict(cls, project_name: str, data: Mapping[str, Any]) -> DeploymentConfig:
        """Create a config from an already-parsed compose mapping.

        Parameters
        ----------
        project_name
            Compose project name (``name:`` in the mapping wins if present).
        data
            Mapping with ``services`` and optional ``volumes``/``networks``.
        """
        if not isinstance(data, Mapping):
            raise configuration_error("compose", "compose document must be a mapping")
        services = data.get("services") or {}
        if not isinstance(services, Mapping):
            raise configuration_error("services", "must be a mapping of service name to definition")

        return cls(
            project_name=str(data.get("name") or project_name),
            services=tuple(ServiceSpec.from_mapping(str(n), d) for n, d in services.items()),
            volumes=_pass_through(data.get("volumes")),
            networks=_pass_through(data.get("networks")),
            environment={str(k): str(v) for k, v in (data.get("environment") or {}).items()},
            version=str(data["version"]) if data.get("version") is not None else None,
        )


def _pass_through(definitions: Mapping[str, Any] | Iterable[str] | None) -> dict[str, dict[str, Any]]:
    if not definitions:
        return {}
    if isinstance(definitions, Mapping):
        return {str(k): dict(v or {}) for k, v in definitions.items()}
    return {str(k): {} for k in definitions}


__all__ = [
    "DeploymentConfig",
    "HealthCheckSpec",
    "ServiceSpec",
    "parse_duration",
]
