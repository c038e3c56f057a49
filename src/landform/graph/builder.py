"""
Dependency graph construction.

Derives a directed acyclic graph from resource references (implicit edges)
and ``depends_on`` hints (explicit edges). An edge ``target -> source``
means the target must be applied before the source.

Validation happens in full before a Graph is returned:
    - (kind, name) is unique
    - every reference and hint resolves to a declared resource
    - there is no cycle (three-colour depth-first search)

A Graph is immutable; a re-plan rebuilds it from scratch.
"""

from __future__ import annotations

import heapq
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Sequence

import structlog

from landform.core.errors import CycleError, DuplicateResourceError, UnresolvedReferenceError
from landform.model import ResourceKey, ResourceSpec

logger = structlog.get_logger()


class _Mark(Enum):
    UNVISITED = 0
    IN_PROGRESS = 1
    DONE = 2


class Graph:
    """Immutable dependency graph over declared resources."""

    def __init__(
        self,
        specs: Sequence[ResourceSpec],
        dependencies: Mapping[ResourceKey, tuple[ResourceKey, ...]],
    ) -> None:
        self._specs: Mapping[ResourceKey, ResourceSpec] = MappingProxyType(
            {spec.key: spec for spec in specs}
        )
        self._index = {key: i for i, key in enumerate(self._specs)}
        self._dependencies = MappingProxyType(dict(dependencies))
        dependents: dict[ResourceKey, list[ResourceKey]] = {key: [] for key in self._specs}
        for key, deps in self._dependencies.items():
            for dep in deps:
                dependents[dep].append(key)
        self._dependents = MappingProxyType({k: tuple(v) for k, v in dependents.items()})
        self._order = self._topological_order()

    def __contains__(self, key: object) -> bool:
        return key in self._specs

    def __iter__(self) -> Iterator[ResourceKey]:
        return iter(self._specs)

    def __len__(self) -> int:
        return len(self._specs)

    @property
    def specs(self) -> Mapping[ResourceKey, ResourceSpec]:
        return self._specs

    def spec(self, key: ResourceKey) -> ResourceSpec:
        return self._specs[key]

    def dependencies(self, key: ResourceKey) -> tuple[ResourceKey, ...]:
        """Keys that must be applied before ``key``."""
        return self._dependencies[key]

    def dependents(self, key: ResourceKey) -> tuple[ResourceKey, ...]:
        """Keys that must be applied after ``key``."""
        return self._dependents[key]

    def topological_order(self) -> tuple[ResourceKey, ...]:
        """Dependencies before dependents; ties broken by declaration order."""
        return self._order

    def _topological_order(self) -> tuple[ResourceKey, ...]:
        remaining = {key: len(deps) for key, deps in self._dependencies.items()}
        ready = [(self._index[key], key) for key, count in remaining.items() if count == 0]
        heapq.heapify(ready)
        order: list[ResourceKey] = []
        while ready:
            _, key = heapq.heappop(ready)
            order.append(key)
            for dependent in self._dependents[key]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, (self._index[dependent], dependent))
        return tuple(order)


def build_graph(specs: Iterable[ResourceSpec]) -> Graph:
    """Build and validate the dependency graph.

    Raises:
        DuplicateResourceError: two specs share (kind, name)
        UnresolvedReferenceError: a reference or hint targets an undeclared resource
        CycleError: the references form a cycle; ``path`` lists the full cycle
    """
    ordered: list[ResourceSpec] = []
    declared: set[ResourceKey] = set()
    for spec in specs:
        if spec.key in declared:
            raise DuplicateResourceError(spec.key)
        declared.add(spec.key)
        ordered.append(spec)

    dependencies: dict[ResourceKey, tuple[ResourceKey, ...]] = {}
    for spec in ordered:
        deps = spec.dependency_keys()
        for dep in deps:
            if dep not in declared:
                raise UnresolvedReferenceError(spec.key, dep)
        dependencies[spec.key] = tuple(deps)

    cycle = find_cycle([spec.key for spec in ordered], dependencies)
    if cycle:
        raise CycleError(cycle)

    graph = Graph(ordered, dependencies)
    logger.debug(
        "graph_built",
        nodes=len(graph),
        edges=sum(len(d) for d in dependencies.values()),
    )
    return graph


def find_cycle(
    keys: Sequence[ResourceKey],
    dependencies: Mapping[ResourceKey, Sequence[ResourceKey]],
) -> list[ResourceKey] | None:
    """Return the first cycle found as a closed path, or None.

    Iterative depth-first search with unvisited/in-progress/done marking.
    Reaching an in-progress node closes a cycle; the path is read off the
    current DFS stack.
    """
    marks = {key: _Mark.UNVISITED for key in keys}
    for root in keys:
        if marks[root] is not _Mark.UNVISITED:
            continue
        marks[root] = _Mark.IN_PROGRESS
        path = [root]
        stack = [iter(dependencies.get(root, ()))]
        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                stack.pop()
                marks[path.pop()] = _Mark.DONE
                continue
            mark = marks.get(nxt, _Mark.DONE)
            if mark is _Mark.IN_PROGRESS:
                start = path.index(nxt)
                # path runs dependent -> dependency; report in apply order
                cycle = path[start:] + [nxt]
                cycle.reverse()
                return cycle
            if mark is _Mark.UNVISITED:
                marks[nxt] = _Mark.IN_PROGRESS
                path.append(nxt)
                stack.append(iter(dependencies.get(nxt, ())))
    return None
