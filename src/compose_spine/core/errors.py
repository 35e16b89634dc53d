"""
Structured error taxonomy for compose lifecycle operations.

Every failure the lifecycle manager reports is a ``TaxonomyError``: a single
exception type tagged with an ``ErrorKind``. The kind alone decides the
severity, the API status code and whether the failure is retryable, so
callers (CLIs, orchestration agents, dashboards) can branch on metadata
instead of parsing message text.

Manifesto:
    - **Tagged variant:** One exception class, one ``kind`` tag per instance
    - **Fixed profiles:** kind -> {severity, status_code, retryable} is a table
    - **Immutable:** Errors are values; ``with_context()`` returns a copy
    - **Always extractable:** ``extract_metadata()`` never fails, whatever it gets

Architecture:
    ::

        ┌───────────────────────────────────────────────────────────────┐
        │                       TaxonomyError                            │
        │  code · message · kind · severity · status_code · retryable    │
        │  help · docs · context · cause                                 │
        ├───────────────────────────────────────────────────────────────┤
        │  kind            status  severity  retryable                   │
        │  compose           400   error     no                          │
        │  daemon            503   error     yes                         │
        │  container         422   warning   yes                         │
        │  health-check      503   warning   yes                         │
        │  image-build       422   error     yes                         │
        │  network           503   warning   yes                         │
        │  volume            422   warning   yes                         │
        │  configuration     400   error     no                          │
        └───────────────────────────────────────────────────────────────┘

Examples:
    >>> error = daemon_error("start", "connection refused")
    >>> error.code, error.status_code, error.retryable
    ('docker/daemon', 503, True)
    >>> extract_metadata(ValueError("boom")).code
    'docker/unknown'

Guardrails:
    ❌ DON'T: Pick severity or retryable per call site
    ✅ DO: Pick the kind; the profile table supplies the rest

    ❌ DON'T: Retry inside the lifecycle manager
    ✅ DO: Surface ``retryable`` and let the caller decide

Tags:
    error-handling, taxonomy, retry-logic, error-metadata, compose
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any

DOCS_BASE_URL = "https://docs.kitium.ai/errors/docker"
CODE_NAMESPACE = "docker"


class ErrorKind(str, Enum):
    """Category tag carried by every taxonomy error."""

    COMPOSE = "compose"
    DAEMON = "daemon"
    CONTAINER = "container"
    HEALTH_CHECK = "health-check"
    IMAGE_BUILD = "image-build"
    NETWORK = "network"
    VOLUME = "volume"
    CONFIGURATION = "configuration"

    # Only produced by extract_metadata() for foreign errors
    UNKNOWN = "unknown"


class Severity(str, Enum):
    """How loudly an error should be surfaced."""

    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class KindProfile:
    """Fixed attributes shared by every error of one kind."""

    status_code: int
    severity: Severity
    retryable: bool
    title: str
    help: str | None = None

    def code(self, kind: ErrorKind) -> str:
        return f"{CODE_NAMESPACE}/{kind.value}"

    def docs(self, kind: ErrorKind) -> str | None:
        if kind is ErrorKind.UNKNOWN:
            return None
        return f"{DOCS_BASE_URL}/{kind.value}"


KIND_PROFILES: Mapping[ErrorKind, KindProfile] = MappingProxyType({
    ErrorKind.COMPOSE: KindProfile(
        status_code=400,
        severity=Severity.ERROR,
        retryable=False,
        title="Docker Compose operation failed",
        help="Verify Docker Compose configuration and environment setup",
    ),
    ErrorKind.DAEMON: KindProfile(
        status_code=503,
        severity=Severity.ERROR,
        retryable=True,
        title="Failed to connect to Docker daemon",
        help="Ensure Docker daemon is running and accessible",
    ),
    ErrorKind.CONTAINER: KindProfile(
        status_code=422,
        severity=Severity.WARNING,
        retryable=True,
        title="Container operation failed",
        help="Check container logs and ensure required services are running",
    ),
    ErrorKind.HEALTH_CHECK: KindProfile(
        status_code=503,
        severity=Severity.WARNING,
        retryable=True,
        title="Service health check failed",
        help="Verify service is running and health endpoint is accessible",
    ),
    ErrorKind.IMAGE_BUILD: KindProfile(
        status_code=422,
        severity=Severity.ERROR,
        retryable=True,
        title="Failed to build Docker image",
        help="Check Dockerfile syntax and build context",
    ),
    ErrorKind.NETWORK: KindProfile(
        status_code=503,
        severity=Severity.WARNING,
        retryable=True,
        title="Docker network operation failed",
        help="Check Docker network configuration and connectivity",
    ),
    ErrorKind.VOLUME: KindProfile(
        status_code=422,
        severity=Severity.WARNING,
        retryable=True,
        title="Docker volume operation failed",
        help="Check Docker volume configuration and disk space",
    ),
    ErrorKind.CONFIGURATION: KindProfile(
        status_code=400,
        severity=Severity.ERROR,
        retryable=False,
        title="Docker configuration error",
        help="Check Docker configuration and environment variables",
    ),
    ErrorKind.UNKNOWN: KindProfile(
        status_code=500,
        severity=Severity.ERROR,
        retryable=False,
        title="Unclassified error",
    ),
})


@dataclass(frozen=True)
class ErrorMetadata:
    """Normalized metadata record for any error value.

    This is the record callers map onto their own boundary (for example an
    HTTP status in a serving layer). ``help`` and ``docs`` are omitted from
    ``to_dict()`` when unset.
    """

    code: str
    kind: str
    severity: str
    status_code: int
    retryable: bool
    help: str | None = None
    docs: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "code": self.code,
            "kind": self.kind,
            "severity": self.severity,
            "status_code": self.status_code,
            "retryable": self.retryable,
        }
        if self.help is not None:
            result["help"] = self.help
        if self.docs is not None:
            result["docs"] = self.docs
        return result


UNKNOWN_METADATA = ErrorMetadata(
    code=f"{CODE_NAMESPACE}/{ErrorKind.UNKNOWN.value}",
    kind=ErrorKind.UNKNOWN.value,
    severity=Severity.ERROR.value,
    status_code=500,
    retryable=False,
)


class TaxonomyError(Exception):
    """
    Classified, immutable error raised or reported by the lifecycle manager.

    Severity, status code, retryability, help text and documentation link all
    come from ``KIND_PROFILES[kind]``. Construct instances through the
    per-kind factories (``daemon_error()``, ``container_error()``...) rather
    than directly, so the message format stays consistent.

    Examples:
        >>> err = TaxonomyError(ErrorKind.VOLUME, "disk full", context={"volume": "pgdata"})
        >>> err.severity
        <Severity.WARNING: 'warning'>
        >>> err.context["volume"]
        'pgdata'
        >>> err.retryable = False
        Traceback (most recent call last):
        ...
        AttributeError: TaxonomyError is immutable

    Attributes:
        code: Namespaced machine-readable identifier (``docker/<kind>``)
        message: Human readable message
        kind: ErrorKind tag
        severity: Severity from the kind profile
        status_code: API boundary status from the kind profile
        retryable: Retry hint from the kind profile
        help: Remediation hint
        docs: Documentation URL
        context: Read-only structured context
        cause: Underlying exception, if any (also chained as ``__cause__``)
    """

    def __init__(
        self,
        kind: ErrorKind | str,
        message: str,
        *,
        context: Mapping[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        kind = ErrorKind(kind)
        profile = KIND_PROFILES[kind]
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.code = profile.code(kind)
        self.severity = profile.severity
        self.status_code = profile.status_code
        self.retryable = profile.retryable
        self.help = profile.help
        self.docs = profile.docs(kind)
        self.context: Mapping[str, Any] = MappingProxyType(dict(context or {}))
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause
        self._frozen = True

    def __setattr__(self, name: str, value: Any) -> None:
        # Interpreter-managed dunders (__traceback__, __cause__...) stay writable
        if getattr(self, "_frozen", False) and not name.startswith("__"):
            raise AttributeError(f"{type(self).__name__} is immutable")
        super().__setattr__(name, value)

    def __delattr__(self, name: str) -> None:
        if getattr(self, "_frozen", False) and not name.startswith("__"):
            raise AttributeError(f"{type(self).__name__} is immutable")
        super().__delattr__(name)

    def __reduce__(self):
        return (
            _rebuild_error,
            (self.kind.value, self.message, dict(self.context), self.cause),
        )

    def with_context(self, **kwargs: Any) -> TaxonomyError:
        """Return a copy of this error with extra context merged in."""
        return TaxonomyError(
            self.kind,
            self.message,
            context={**self.context, **kwargs},
            cause=self.cause,
        )

    def metadata(self) -> ErrorMetadata:
        return ErrorMetadata(
            code=self.code,
            kind=self.kind.value,
            severity=self.severity.value,
            status_code=self.status_code,
            retryable=self.retryable,
            help=self.help,
            docs=self.docs,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = self.metadata().to_dict()
        result["message"] = self.message
        if self.context:
            result["context"] = dict(self.context)
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"TaxonomyError({self.code!r}, {self.message!r})"


def _rebuild_error(
    kind: str,
    message: str,
    context: dict[str, Any],
    cause: BaseException | None,
) -> TaxonomyError:
    return TaxonomyError(kind, message, context=context, cause=cause)


# =============================================================================
# FACTORIES
# =============================================================================


def _build(
    kind: ErrorKind,
    detail: str,
    reason: str,
    base_context: dict[str, Any],
    context: Mapping[str, Any] | None,
    cause: BaseException | None,
) -> TaxonomyError:
    title = KIND_PROFILES[kind].title
    merged = {k: v for k, v in base_context.items() if v is not None}
    if context:
        merged.update(context)
    return TaxonomyError(kind, f"{title}: {detail} - {reason}", context=merged, cause=cause)


def compose_error(
    operation: str,
    reason: str,
    context: Mapping[str, Any] | None = None,
    *,
    cause: BaseException | None = None,
) -> TaxonomyError:
    """Compose-level failure (bad project definition, torn-down deployment)."""
    return _build(
        ErrorKind.COMPOSE, operation, reason,
        {"operation": operation, "reason": reason}, context, cause,
    )


def daemon_error(
    operation: str,
    reason: str,
    context: Mapping[str, Any] | None = None,
    *,
    cause: BaseException | None = None,
) -> TaxonomyError:
    """Engine/daemon failure while carrying out a driver call."""
    return _build(
        ErrorKind.DAEMON, operation, reason,
        {"operation": operation, "reason": reason}, context, cause,
    )


def container_error(
    operation: str,
    reason: str,
    context: Mapping[str, Any] | None = None,
    *,
    container: str | None = None,
    cause: BaseException | None = None,
) -> TaxonomyError:
    """Per-container failure; used for advisory reads (status, logs)."""
    detail = f"{operation} ({container})" if container else operation
    return _build(
        ErrorKind.CONTAINER, detail, reason,
        {"operation": operation, "container": container, "reason": reason}, context, cause,
    )


def health_check_error(
    service: str,
    reason: str,
    context: Mapping[str, Any] | None = None,
    *,
    endpoint: str | None = None,
    cause: BaseException | None = None,
) -> TaxonomyError:
    detail = f"{service} ({endpoint})" if endpoint else service
    return _build(
        ErrorKind.HEALTH_CHECK, detail, reason,
        {"service": service, "endpoint": endpoint, "reason": reason}, context, cause,
    )


def image_build_error(
    image: str,
    reason: str,
    context: Mapping[str, Any] | None = None,
    *,
    cause: BaseException | None = None,
) -> TaxonomyError:
    return _build(
        ErrorKind.IMAGE_BUILD, image, reason,
        {"image": image, "reason": reason}, context, cause,
    )


def network_error(
    operation: str,
    reason: str,
    context: Mapping[str, Any] | None = None,
    *,
    network: str | None = None,
    cause: BaseException | None = None,
) -> TaxonomyError:
    detail = f"{operation} ({network})" if network else operation
    return _build(
        ErrorKind.NETWORK, detail, reason,
        {"operation": operation, "network": network, "reason": reason}, context, cause,
    )


def volume_error(
    operation: str,
    reason: str,
    context: Mapping[str, Any] | None = None,
    *,
    volume: str | None = None,
    cause: BaseException | None = None,
) -> TaxonomyError:
    detail = f"{operation} ({volume})" if volume else operation
    return _build(
        ErrorKind.VOLUME, detail, reason,
        {"operation": operation, "volume": volume, "reason": reason}, context, cause,
    )


def configuration_error(
    field: str,
    reason: str,
    context: Mapping[str, Any] | None = None,
    *,
    cause: BaseException | None = None,
) -> TaxonomyError:
    """Invalid configuration; never retryable, always halts the operation."""
    return _build(
        ErrorKind.CONFIGURATION, f"field '{field}'", reason,
        {"field": field, "reason": reason}, context, cause,
    )


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def extract_metadata(error: object) -> ErrorMetadata:
    """Return the metadata record for ``error``.

    Accepts any value. Anything that is not a ``TaxonomyError`` yields the
    ``docker/unknown`` record (status 500, severity error, not retryable).
    """
    if isinstance(error, TaxonomyError):
        return error.metadata()
    return UNKNOWN_METADATA


def is_retryable(error: object) -> bool:
    """Check if an error is retryable."""
    return extract_metadata(error).retryable


def kind_of(error: object) -> ErrorKind:
    """Get the kind of an error (``UNKNOWN`` for foreign errors)."""
    if isinstance(error, TaxonomyError):
        return error.kind
    return ErrorKind.UNKNOWN


__all__ = [
    "KIND_PROFILES",
    "UNKNOWN_METADATA",
    "ErrorKind",
    "ErrorMetadata",
    "KindProfile",
    "Severity",
    "TaxonomyError",
    "compose_error",
    "configuration_error",
    "container_error",
    "daemon_error",
    "extract_metadata",
    "health_check_error",
    "image_build_error",
    "is_retryable",
    "kind_of",
    "network_error",
    "volume_error",
]
