"""Result models for compose lifecycle operations.

Every mutating manager operation returns an ``OperationOutcome``: the
services the operation touched, one ``ServiceResult`` per service (in
completion order), the taxonomy errors raised along the way and the
aggregate duration.

Key Concepts:
    ServiceResultStatus: SUCCEEDED, FAILED, SKIPPED (a dependency failed,
        never attempted), NOOP (nothing to do, e.g. stopping a stopped service).
    OperationStatus: SUCCEEDED, PARTIAL, FAILED, NOOP derived from the
        per-service results by ``OperationOutcome.from_results()``.

Architecture Decisions:
    - Pydantic v2 models (frozen) so outcomes serialise cleanly; errors are
      rendered through ``TaxonomyError.to_dict()`` in ``to_dict()``.
    - Partial failure is data, not an exception. ``raise_for_errors()``
      converts it for callers who prefer exceptions.

Tags:
    results, outcome, pydantic, status, compose
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from compose_spine.core.errors import TaxonomyError
from compose_spine.deploy.state import ServicePhase


class ServiceResultStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    NOOP = "noop"


class OperationStatus(str, Enum):
    """Overall status of one operation."""

    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"
    NOOP = "noop"


class ServiceResult(BaseModel):
    """What one operation did to one service."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    service: str
    status: ServiceResultStatus
    phase: ServicePhase | None = Field(default=None, description="Phase after the operation")
    error: TaxonomyError | None = None
    detail: str | None = Field(default=None, description="Why a service was skipped or left alone")
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status in (ServiceResultStatus.SUCCEEDED, ServiceResultStatus.NOOP)

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "status": self.status.value,
            "phase": self.phase.value if self.phase else None,
            "error": self.error.to_dict() if self.error else None,
            "detail": self.detail,
            "duration_ms": round(self.duration_ms, 2),
        }


class OperationOutcome(BaseModel):
    """Aggregate outcome of one manager operation."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    operation: str
    project: str
    status: OperationStatus
    services: tuple[str, ...] = ()
    results: tuple[ServiceResult, ...] = ()
    errors: tuple[TaxonomyError, ...] = ()
    started_at: datetime
    duration_ms: float = 0.0

    @classmethod
    def from_results(
        cls,
        *,
        operation: str,
        project: str,
        services: tuple[str, ...],
        results: list[ServiceResult],
        errors: list[TaxonomyError],
        started_at: datetime,
        duration_ms: float,
    ) -> OperationOutcome:
        return cls(
            operation=operation,
            project=project,
            status=_derive_status(results, errors),
            services=services,
            results=tuple(results),
            errors=tuple(errors),
            started_at=started_at,
            duration_ms=duration_ms,
        )

    @property
    def ok(self) -> bool:
        return self.status in (OperationStatus.SUCCEEDED, OperationStatus.NOOP)

    def _names(self, status: ServiceResultStatus) -> list[str]:
        return [r.service for r in self.results if r.status is status]

    @property
    def succeeded(self) -> list[str]:
        return self._names(ServiceResultStatus.SUCCEEDED)

    @property
    def failed(self) -> list[str]:
        return self._names(ServiceResultStatus.FAILED)

    @property
    def skipped(self) -> list[str]:
        return self._names(ServiceResultStatus.SKIPPED)

    @property
    def noop(self) -> list[str]:
        return self._names(ServiceResultStatus.NOOP)

    def result_for(self, service: str) -> ServiceResult | None:
        for result in self.results:
            if result.service == service:
                return result
        return None

    def raise_for_errors(self) -> None:
        """Raise the first recorded error, if any."""
        if self.errors:
            raise self.errors[0]

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "project": self.project,
            "status": self.status.value,
            "services": list(self.services),
            "results": [r.to_dict() for r in self.results],
            "errors": [e.to_dict() for e in self.errors],
            "started_at": self.started_at.isoformat(),
            "duration_ms": round(self.duration_ms, 2),
        }


def _derive_status(results: list[ServiceResult], errors: list[TaxonomyError]) -> OperationStatus:
    if not results or all(r.status is ServiceResultStatus.NOOP for r in results):
        return OperationStatus.FAILED if errors else OperationStatus.NOOP
    if any(r.status is ServiceResultStatus.SUCCEEDED for r in results):
        if errors or any(not r.ok for r in results):
            return OperationStatus.PARTIAL
        return OperationStatus.SUCCEEDED
    if all(r.ok for r in results) and not errors:
        return OperationStatus.NOOP
    return OperationStatus.FAILED


__all__ = [
    "OperationOutcome",
    "OperationStatus",
    "ServiceResult",
    "ServiceResultStatus",
]
