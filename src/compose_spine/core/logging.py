"""
Structured logging for compose-spine.

Every lifecycle event should be traceable back to the project and operation
that produced it, including events logged from driver worker threads.

Usage:
    # Once at application startup; level, format and service name come
    # from ``ComposeSpineSettings`` (COMPOSE_SPINE_LOG_LEVEL, ...)
    configure_logging()

    # Or explicitly
    configure_logging(level="DEBUG", log_format="console", force=True)

    # Scoped fields, merged into every event logged inside the block
    with log_context(project="demo", operation="start"):
        logger.info("compose.driver.call_failed", service="db")

Processor chain:
    TimeStamper (ISO, UTC) -> merge_contextvars -> level / logger name
    -> service.name -> JSONRenderer or ConsoleRenderer

Threads started by the manager run in a copy of the caller's context, so
fields bound with ``log_context`` reach them as well.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from compose_spine.core.settings import ComposeSpineSettings, get_settings

_service_name = "compose-spine"
_configured = False


def _add_service_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service.name", _service_name)
    return event_dict


def configure_logging(
    level: str | None = None,
    log_format: Literal["json", "console"] | None = None,
    service: str | None = None,
    *,
    settings: ComposeSpineSettings | None = None,
    force: bool = False,
) -> None:
    """Configure structlog (and the stdlib root handler it writes through).

    Arguments left as ``None`` are taken from ``settings`` (default
    ``get_settings()``). Subsequent calls are no-ops unless ``force=True``.
    """
    global _configured, _service_name

    if _configured and not force:
        return

    settings = settings or get_settings()
    level = (level or settings.log_level).upper()
    log_format = log_format or settings.log_format
    _service_name = service or settings.service_name

    processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        _add_service_name,
    ]
    if log_format == "json":
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors += [structlog.dev.set_exc_info, structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]

    numeric_level = getattr(logging, level)
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)
    _configured = True


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind ``fields`` for the duration of the block, restoring prior values after."""
    with structlog.contextvars.bound_contextvars(**fields):
        yield


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


__all__ = ["clear_context", "configure_logging", "get_logger", "log_context"]
