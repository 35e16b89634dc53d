"""
compose-spine - Compose lifecycle manager with a classified error taxonomy.

Subpackages:
- compose_spine.core: errors, logging, settings, timing
- compose_spine.deploy: deployment config, dependency graph, manager, driver protocol
"""

__version__ = "0.1.0"

from compose_spine.core.errors import (  # noqa: F401
    ErrorKind,
    ErrorMetadata,
    Severity,
    TaxonomyError,
    extract_metadata,
    is_retryable,
)
from compose_spine.core.logging import configure_logging  # noqa: F401
from compose_spine.deploy import (  # noqa: F401
    ComposeManager,
    DeploymentConfig,
    HealthCheckSpec,
    OperationOutcome,
    RuntimeDriver,
    ServicePhase,
    ServiceSpec,
)

__all__ = [
    "ComposeManager",
    "DeploymentConfig",
    "ErrorKind",
    "ErrorMetadata",
    "HealthCheckSpec",
    "OperationOutcome",
    "RuntimeDriver",
    "ServicePhase",
    "ServiceSpec",
    "Severity",
    "TaxonomyError",
    "configure_logging",
    "extract_metadata",
    "is_retryable",
]
