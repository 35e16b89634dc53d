"""Service dependency graph.

Adjacency by service name over the ``depends_on`` edges of a deployment.
Used for three things:

- ``validate()``: every referenced dependency exists, no service depends on
  itself, the graph is acyclic (Kahn's algorithm), names are unique.
- ``topological_order()``: a deterministic dependency-respecting order over
  any subset of services (declaration order breaks ties).
- ``prerequisites()``: the edges an execution plan waits on, forward for
  start (dependencies first) or reversed for stop (dependents first).

Edges to undeclared services are ignored everywhere except ``validate()``,
which reports them.
"""

from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Iterable

from compose_spine.core.errors import configuration_error
from compose_spine.deploy.config import DeploymentConfig, ServiceSpec


class DependencyGraph:
    """Directed graph of ``depends_on`` edges (dependency -> dependent)."""

    def __init__(self, services: Iterable[ServiceSpec]) -> None:
        specs = list(services)
        self._declared = [s.name for s in specs]
        self._specs: dict[str, ServiceSpec] = {}
        for spec in specs:
            self._specs.setdefault(spec.name, spec)
        self._order = {name: i for i, name in enumerate(self._specs)}

        self._dependencies: dict[str, tuple[str, ...]] = {}
        self._dependents: dict[str, list[str]] = defaultdict(list)
        for name, spec in self._specs.items():
            deps = tuple(dict.fromkeys(d for d in spec.depends_on if d in self._specs and d != name))
            self._dependencies[name] = deps
            for dep in deps:
                self._dependents[dep].append(name)

    @classmethod
    def from_config(cls, config: DeploymentConfig) -> DependencyGraph:
        return cls(config.services)

    @property
    def names(self) -> tuple[str, ...]:
        """Unique service names in declaration order."""
        return tuple(self._specs)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __len__(self) -> int:
        return len(self._specs)

    def dependencies(self, name: str) -> tuple[str, ...]:
        """Direct, declared dependencies of ``name``."""
        return self._dependencies.get(name, ())

    def dependents(self, name: str) -> tuple[str, ...]:
        """Services that directly depend on ``name``."""
        return tuple(self._dependents.get(name, ()))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Check the graph is non-empty, fully resolved and acyclic.

        Raises
        ------
        TaxonomyError
            ``configuration`` kind. ``context["problems"]`` lists every
            problem found, not just the first.
        """
        problems: list[str] = []
        field = "services"

        if not self._specs:
            raise configuration_error(field, "deployment declares no services")

        seen: set[str] = set()
        for name in self._declared:
            if not name:
                problems.append("service with an empty name")
            elif name in seen:
                problems.append(f"duplicate service name '{name}'")
            seen.add(name)

        for name, spec in self._specs.items():
            for dep in spec.depends_on:
                if dep == name:
                    field = f"services.{name}.depends_on"
                    problems.append(f"service '{name}' depends on itself")
                elif dep not in self._specs:
                    field = f"services.{name}.depends_on"
                    problems.append(f"service '{name}' depends on unknown service '{dep}'")

        cycle = self._cycle_members()
        if cycle:
            field = "depends_on"
            problems.append(f"dependency cycle detected among services: {cycle}")

        if problems:
            raise configuration_error(
                field,
                "; ".join(problems),
                {"problems": problems},
            )

    def _cycle_members(self) -> list[str]:
        """Services left with unmet in-degree after Kahn's algorithm."""
        in_degree = {name: len(self._dependencies[name]) for name in self._specs}
        queue: deque[str] = deque(n for n, deg in in_degree.items() if deg == 0)
        visited = 0
        while queue:
            node = queue.popleft()
            visited += 1
            for dependent in self._dependents.get(node, ()):
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)
        if visited == len(self._specs):
            return []
        return [name for name, deg in in_degree.items() if deg > 0]

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def with_dependencies(self, names: Iterable[str]) -> set[str]:
        """``names`` plus everything they transitively depend on."""
        return self._closure(names, self._dependencies)

    def with_dependents(self, names: Iterable[str]) -> set[str]:
        """``names`` plus everything that transitively depends on them."""
        return self._closure(names, self._dependents)

    def _closure(self, names: Iterable[str], edges: dict[str, tuple[str, ...]] | dict[str, list[str]]) -> set[str]:
        result: set[str] = set()
        stack = [n for n in names if n in self._specs]
        while stack:
            node = stack.pop()
            if node in result:
                continue
            result.add(node)
            stack.extend(edges.get(node, ()))
        return result

    def prerequisites(self, names: Iterable[str], *, reverse: bool = False) -> dict[str, set[str]]:
        """Edges restricted to ``names``.

        Forward: service -> its dependencies (start order).
        Reverse: service -> its dependents (stop order).
        """
        subset = {n for n in names if n in self._specs}
        edges = self._dependents if reverse else self._dependencies
        return {name: {p for p in edges.get(name, ()) if p in subset} for name in subset}

    def topological_order(self, names: Iterable[str] | None = None, *, reverse: bool = False) -> list[str]:
        """Return ``names`` (default: all) in dependency order.

        Dependencies come before dependents; ``reverse=True`` flips that for
        teardown. Ties are broken by declaration order so the result is
        deterministic. Services caught in a cycle are omitted.
        """
        subset = self.names if names is None else [n for n in self._specs if n in set(names)]
        waits_on = self.prerequisites(subset, reverse=reverse)
        unlocks: dict[str, list[str]] = defaultdict(list)
        for name, prereqs in waits_on.items():
            for prereq in prereqs:
                unlocks[prereq].append(name)

        in_degree = {name: len(waits_on[name]) for name in subset}
        ready = sorted((n for n in subset if in_degree[n] == 0), key=self._order.__getitem__)
        result: list[str] = []
        while ready:
            node = ready.pop(0)
            result.append(node)
            for nxt in unlocks.get(node, ()):
                in_degree[nxt] -= 1
                if in_degree[nxt] == 0:
                    ready.append(nxt)
            ready.sort(key=self._order.__getitem__)
        return result


__all__ = ["DependencyGraph"]
