"""
Resource model.

Typed representation of desired resources: kind, name, attribute map and
references to other resources. Attribute values are a tagged union of
scalars, lists, maps and ``ResourceRef`` values; refs may appear at any
depth inside lists and maps.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping

ID_ATTRIBUTE = "id"

_REFERENCE_PATTERN = re.compile(
    r"^\$\{(?P<kind>[A-Za-z0-9_-]+)\.(?P<name>[A-Za-z0-9_-]+)\.(?P<attribute>[A-Za-z0-9_.-]+)\}$"
)


@dataclass(frozen=True, order=True)
class ResourceKey:
    """Identity of a resource within a declaration and in state."""

    kind: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind}.{self.name}"

    @classmethod
    def parse(cls, value: str) -> ResourceKey:
        kind, sep, name = value.partition(".")
        if not sep or not kind or not name:
            raise ValueError(f"Invalid resource key '{value}', expected 'kind.name'")
        return cls(kind, name)


@dataclass(frozen=True)
class ResourceRef:
    """Weak link to an attribute of another resource.

    ``attribute`` is a dotted path into the target's attributes; ``id``
    denotes the provider id.
    """

    kind: str
    name: str
    attribute: str = ID_ATTRIBUTE

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(self.kind, self.name)

    def __str__(self) -> str:
        return f"${{{self.kind}.{self.name}.{self.attribute}}}"


@dataclass(frozen=True)
class ResourceSpec:
    """A desired resource as declared for the current run."""

    kind: str
    name: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    depends_on: frozenset[ResourceKey] = frozenset()

    def __post_init__(self) -> None:
        if not self.kind or not self.name:
            raise ValueError("Resource kind and name are required")
        hints = frozenset(
            dep.key if isinstance(dep, ResourceRef) else dep for dep in self.depends_on
        )
        object.__setattr__(self, "depends_on", hints)
        object.__setattr__(self, "attributes", dict(self.attributes))

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(self.kind, self.name)

    def references(self) -> list[ResourceRef]:
        """All refs found in the attribute map, in traversal order."""
        return list(iter_refs(self.attributes))

    def dependency_keys(self) -> list[ResourceKey]:
        """Keys this resource must be applied after, without duplicates."""
        seen: dict[ResourceKey, None] = {}
        for ref in self.references():
            seen.setdefault(ref.key, None)
        for key in sorted(self.depends_on):
            seen.setdefault(key, None)
        return list(seen)


@dataclass(frozen=True)
class Declaration:
    """Resources plus the named outputs to extract after apply.

    ``providers`` maps a resource kind to adapter options
    (``{"type": "http", ...}``); the engine itself ignores it.
    """

    resources: tuple[ResourceSpec, ...] = ()
    outputs: Mapping[str, Any] = field(default_factory=dict)
    providers: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "resources", tuple(self.resources))
        object.__setattr__(self, "outputs", dict(self.outputs))
        object.__setattr__(self, "providers", dict(self.providers))


def iter_refs(value: Any) -> Iterator[ResourceRef]:
    """Yield every ResourceRef nested in ``value``."""
    if isinstance(value, ResourceRef):
        yield value
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from iter_refs(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_refs(item)


def resolve_value(value: Any, lookup: Callable[[ResourceRef], Any]) -> Any:
    """Return a copy of ``value`` with every ref replaced by ``lookup(ref)``."""
    if isinstance(value, ResourceRef):
        return lookup(value)
    if isinstance(value, Mapping):
        return {k: resolve_value(v, lookup) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_value(v, lookup) for v in value]
    return value


def parse_reference(value: str) -> ResourceRef | None:
    """Parse a whole-value ``${kind.name.attribute}`` string.

    Returns None for any other string; partial interpolation is not supported.
    """
    match = _REFERENCE_PATTERN.match(value.strip())
    if not match:
        return None
    return ResourceRef(match["kind"], match["name"], match["attribute"])


def parse_references(value: Any) -> Any:
    """Convert reference strings anywhere in ``value`` into ResourceRef values."""
    if isinstance(value, str):
        ref = parse_reference(value)
        return ref if ref is not None else value
    if isinstance(value, Mapping):
        return {k: parse_references(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [parse_references(v) for v in value]
    return value


def lookup_path(attributes: Mapping[str, Any], path: str) -> Any:
    """Follow a dotted path into nested mappings. Raises KeyError when absent."""
    current: Any = attributes
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            raise KeyError(path)
    return current
