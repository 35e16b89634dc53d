"""Dependency-ready concurrent execution.

Runs one action per service over a ``ThreadPoolExecutor``. A service is
submitted as soon as everything it waits on has settled; unrelated branches
of the dependency graph run side by side.

.. code-block:: text

    plan = {"db": set(), "api": {"db"}, "web": {"api"}, "cache": set()}

    t0  ─ db ──────┐            cache ────
    t1             └─ api ──┐
    t2                      └─ web ──

Two readiness policies:

``skip_on_failure=True`` (start, restart)
    A service runs only once every prerequisite *succeeded*. If one failed
    or was skipped, the service is skipped and never handed to the action.

``skip_on_failure=False`` (stop, down)
    A service runs once every prerequisite has *settled*, successfully or
    not. Nothing is skipped; teardown is best-effort.

The coordinating loop runs on the calling thread and owns all bookkeeping,
so no lock is needed around it. Driver calls made inside actions are bounded
with ``call_with_timeout()``. Actions and driver calls run in a copy of the
caller's context, so bound log fields (project, operation) follow them.
"""

from __future__ import annotations

import contextvars
import threading
from collections.abc import Callable, Mapping, Set
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from compose_spine.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class DriverCallTimeout(TimeoutError):
    """A driver call did not return within its time budget."""

    def __init__(self, call: str, timeout: float):
        super().__init__(f"{call} did not complete within {timeout:g}s")
        self.call = call
        self.timeout = timeout


def call_with_timeout(fn: Callable[..., T], timeout: float | None, *args: Any, **kwargs: Any) -> T:
    """Run ``fn`` and give up waiting after ``timeout`` seconds.

    The call runs on a daemon thread. On timeout the thread is abandoned
    (Python threads cannot be killed) and ``DriverCallTimeout`` is raised;
    exceptions raised by ``fn`` propagate unchanged.
    """
    if timeout is None:
        return fn(*args, **kwargs)

    outcome: dict[str, Any] = {}

    def target() -> None:
        try:
            outcome["value"] = fn(*args, **kwargs)
        except BaseException as exc:  # re-raised on the calling thread
            outcome["error"] = exc

    name = getattr(fn, "__name__", "driver-call")
    worker = threading.Thread(
        target=contextvars.copy_context().run, args=(target,), name=f"compose-spine-{name}", daemon=True,
    )
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        raise DriverCallTimeout(name, timeout)
    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]


class TaskState(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class TaskRecord(Generic[T]):
    """How one planned service settled."""

    name: str
    state: TaskState
    value: T | None = None
    error: BaseException | None = None
    """Exception that escaped the action, if any."""
    blocked_by: tuple[str, ...] = ()
    """Prerequisites that failed or were skipped (skipped tasks only)."""


class DependencyScheduler:
    """Execute an action per service in dependency order.

    Args:
        max_workers: Thread-pool size, i.e. how many actions run at once.
        order: Tie-break order for services that become ready together
            (declaration order), keeps submission deterministic.
    """

    def __init__(self, max_workers: int = 4, order: Mapping[str, int] | None = None) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.max_workers = max_workers
        self._order = dict(order or {})

    def _key(self, name: str) -> tuple[int, str]:
        return (self._order.get(name, len(self._order)), name)

    def run(
        self,
        plan: Mapping[str, Set[str]],
        action: Callable[[str], T],
        *,
        succeeded: Callable[[T], bool] = bool,
        skip_on_failure: bool = True,
    ) -> list[TaskRecord[T]]:
        """Run ``action`` for every service in ``plan``.

        Args:
            plan: service -> prerequisites it waits on. Prerequisites outside
                the plan are treated as already satisfied.
            action: Called once per service on a worker thread.
            succeeded: Decides from the action's return value whether the
                service succeeded.
            skip_on_failure: See the module docstring.

        Returns:
            One record per planned service, in completion order.
        """
        waits_on = {name: {p for p in prereqs if p in plan} for name, prereqs in plan.items()}
        pending = set(waits_on)
        ok: set[str] = set()
        not_ok: set[str] = set()
        records: list[TaskRecord[T]] = []

        if not pending:
            return records

        with ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(pending)),
            thread_name_prefix="compose-spine",
        ) as executor:
            futures: dict[Future, str] = {}

            while pending or futures:
                if skip_on_failure:
                    # Skips cascade: a skipped service blocks its own dependents.
                    cascading = True
                    while cascading:
                        cascading = False
                        for name in sorted(pending, key=self._key):
                            blocked = waits_on[name] & not_ok
                            if blocked:
                                pending.discard(name)
                                not_ok.add(name)
                                records.append(TaskRecord(
                                    name=name,
                                    state=TaskState.SKIPPED,
                                    blocked_by=tuple(sorted(blocked, key=self._key)),
                                ))
                                logger.debug("scheduler.skip", service=name, blocked_by=sorted(blocked))
                                cascading = True
                    ready = [n for n in pending if waits_on[n] <= ok]
                else:
                    settled = ok | not_ok
                    ready = [n for n in pending if waits_on[n] <= settled]

                for name in sorted(ready, key=self._key):
                    pending.discard(name)
                    futures[executor.submit(contextvars.copy_context().run, action, name)] = name

                if not futures:
                    # Only reachable with a cyclic plan; graph validation rejects those first.
                    for name in sorted(pending, key=self._key):
                        records.append(TaskRecord(
                            name=name,
                            state=TaskState.SKIPPED,
                            blocked_by=tuple(sorted(waits_on[name] & pending, key=self._key)),
                        ))
                    pending.clear()
                    break

                done, _ = wait(futures, return_when=FIRST_COMPLETED)
                for future in sorted(done, key=lambda f: self._key(futures[f])):
                    name = futures.pop(future)
                    try:
                        value = future.result()
                    except Exception as exc:
                        logger.warning("scheduler.action_raised", service=name, error=str(exc))
                        not_ok.add(name)
                        records.append(TaskRecord(name=name, state=TaskState.FAILED, error=exc))
                        continue
                    if succeeded(value):
                        ok.add(name)
                        records.append(TaskRecord(name=name, state=TaskState.SUCCEEDED, value=value))
                    else:
                        not_ok.add(name)
                        records.append(TaskRecord(name=name, state=TaskState.FAILED, value=value))

        return records


__all__ = [
    "DependencyScheduler",
    "DriverCallTimeout",
    "TaskRecord",
    "TaskState",
    "call_with_timeout",
]
