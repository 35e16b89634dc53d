"""Shared fixtures for deploy tests."""

from __future__ import annotations

import pytest

from compose_spine.core.settings import ComposeSpineSettings
from compose_spine.deploy.config import DeploymentConfig, HealthCheckSpec, ServiceSpec
from compose_spine.deploy.manager import ComposeManager
from compose_spine.deploy.telemetry import RecordingTelemetrySink
from compose_spine.deploy.testing import FakeRuntimeDriver


@pytest.fixture
def demo_config() -> DeploymentConfig:
    """db <- api <- web."""
    return DeploymentConfig(
        project_name="demo",
        services=(
            ServiceSpec(name="db", image="postgres:16"),
            ServiceSpec(name="api", image="demo/api", depends_on=("db",)),
            ServiceSpec(name="web", image="demo/web", depends_on=("api",), ports=("8080:80",)),
        ),
    )


@pytest.fixture
def diamond_config() -> DeploymentConfig:
    """db and cache are independent; api needs both; worker needs cache only."""
    return DeploymentConfig(
        project_name="diamond",
        services=(
            ServiceSpec(name="db", image="postgres:16"),
            ServiceSpec(name="cache", image="redis:7"),
            ServiceSpec(name="api", image="demo/api", depends_on=("db", "cache")),
            ServiceSpec(name="worker", image="demo/worker", depends_on=("cache",)),
        ),
    )


@pytest.fixture
def healthy_config() -> DeploymentConfig:
    return DeploymentConfig(
        project_name="checked",
        services=(
            ServiceSpec(
                name="db",
                image="postgres:16",
                healthcheck=HealthCheckSpec(test=("CMD", "pg_isready"), interval=1.0, retries=2),
            ),
        ),
    )


@pytest.fixture
def driver() -> FakeRuntimeDriver:
    return FakeRuntimeDriver()


@pytest.fixture
def sink() -> RecordingTelemetrySink:
    return RecordingTelemetrySink()


@pytest.fixture
def settings() -> ComposeSpineSettings:
    return ComposeSpineSettings(_env_file=None, driver_timeout_seconds=5.0, max_parallel=4)


@pytest.fixture
def make_manager(driver, sink, settings):
    def factory(config: DeploymentConfig, **kwargs) -> ComposeManager:
        kwargs.setdefault("telemetry", sink)
        kwargs.setdefault("settings", settings)
        return ComposeManager(config, driver, **kwargs)

    return factory


@pytest.fixture
def manager(make_manager, demo_config) -> ComposeManager:
    return make_manager(demo_config)
