"""Core primitives shared by every compose-spine module.

::

    errors.py     TaxonomyError, ErrorKind, per-kind factories, extract_metadata
    logging.py    structlog configuration and context helpers
    settings.py   ComposeSpineSettings (pydantic-settings, COMPOSE_SPINE_*)
    timing.py     TimingResult, timed_block
"""

from compose_spine.core.errors import (
    KIND_PROFILES,
    ErrorKind,
    ErrorMetadata,
    Severity,
    TaxonomyError,
    compose_error,
    configuration_error,
    container_error,
    daemon_error,
    extract_metadata,
    health_check_error,
    image_build_error,
    is_retryable,
    kind_of,
    network_error,
    volume_error,
)
from compose_spine.core.logging import configure_logging, get_logger, log_context
from compose_spine.core.settings import ComposeSpineSettings, get_settings, reset_settings

__all__ = [
    "KIND_PROFILES",
    "ComposeSpineSettings",
    "ErrorKind",
    "ErrorMetadata",
    "Severity",
    "TaxonomyError",
    "compose_error",
    "configuration_error",
    "configure_logging",
    "container_error",
    "daemon_error",
    "extract_metadata",
    "get_logger",
    "get_settings",
    "health_check_error",
    "image_build_error",
    "is_retryable",
    "kind_of",
    "log_context",
    "network_error",
    "reset_settings",
    "volume_error",
]
