"""Telemetry sinks for lifecycle events.

The manager does not write to a process-wide logger directly. It is handed a
sink, any callable ``sink(event, fields)``, and emits:

.. code-block:: text

    compose.<operation>.begin   {operation, project, services, span_id}
    compose.<operation>.end     {operation, project, services, outcome,
                                 duration_ms, span_id, <metrics>}
    compose.error               {operation, project, message, code, kind,
                                 severity, status_code, retryable, help, docs,
                                 context}

``StructlogTelemetrySink`` (the default) forwards events to structlog;
``RecordingTelemetrySink`` keeps them in memory for assertions.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from threading import Lock
from typing import Any

from compose_spine.core.errors import Severity, TaxonomyError, extract_metadata
from compose_spine.core.logging import get_logger
from compose_spine.core.timing import TimingResult

TelemetrySink = Callable[[str, Mapping[str, Any]], None]

logger = get_logger(__name__)


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    fields: Mapping[str, Any] = field(default_factory=dict)


class StructlogTelemetrySink:
    """Emit telemetry events as structlog log lines."""

    def __init__(self, log: Any = None) -> None:
        self._log = log or get_logger("compose_spine.telemetry")

    def __call__(self, event: str, fields: Mapping[str, Any]) -> None:
        if event == "compose.error":
            if fields.get("severity") == Severity.WARNING.value:
                self._log.warning(event, **fields)
            else:
                self._log.error(event, **fields)
        elif event.endswith(".end") and fields.get("outcome") in ("failed", "partial", "error"):
            self._log.warning(event, **fields)
        else:
            self._log.info(event, **fields)


class RecordingTelemetrySink:
    """Collects events in memory. Thread-safe."""

    def __init__(self) -> None:
        self._lock = Lock()
        self.events: list[TelemetryEvent] = []

    def __call__(self, event: str, fields: Mapping[str, Any]) -> None:
        with self._lock:
            self.events.append(TelemetryEvent(event, dict(fields)))

    def names(self) -> list[str]:
        with self._lock:
            return [e.name for e in self.events]

    def of(self, name: str) -> list[TelemetryEvent]:
        with self._lock:
            return [e for e in self.events if e.name == name]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()


class Telemetry:
    """Thin façade the manager uses to emit events to its sink."""

    def __init__(self, sink: TelemetrySink, project: str) -> None:
        self._sink = sink
        self._project = project

    def begin(self, operation: str, services: Sequence[str], timer: TimingResult) -> None:
        self._emit(f"compose.{operation}.begin", {
            "operation": operation,
            "project": self._project,
            "services": list(services),
            "span_id": timer.span_id,
        })

    def end(self, operation: str, services: Sequence[str], timer: TimingResult, outcome: str) -> None:
        """Emit the end event; ``timer`` supplies duration, span id and any metrics."""
        fields: dict[str, Any] = {
            "operation": operation,
            "project": self._project,
            "services": list(services),
            "outcome": outcome,
        }
        fields.update(timer.to_log_dict())
        self._emit(f"compose.{operation}.end", fields)

    def error(self, operation: str, error: BaseException) -> None:
        fields: dict[str, Any] = {"operation": operation, "project": self._project}
        fields.update(extract_metadata(error).to_dict())
        fields["message"] = str(error)
        if isinstance(error, TaxonomyError):
            fields["context"] = dict(error.context)
        self._emit("compose.error", fields)

    def _emit(self, event: str, fields: Mapping[str, Any]) -> None:
        try:
            self._sink(event, fields)
        except Exception:
            # A broken sink must not change the outcome of a lifecycle operation.
            logger.exception("compose.telemetry.sink_failed", telemetry_event=event)


__all__ = [
    "RecordingTelemetrySink",
    "StructlogTelemetrySink",
    "Telemetry",
    "TelemetryEvent",
    "TelemetrySink",
]
