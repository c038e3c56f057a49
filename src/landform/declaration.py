"""
YAML declaration loader.

Usage:
    from landform.declaration import load_declaration

    declaration = load_declaration("topology.yaml")

Format::

    resources:
      - kind: network
        name: main
        attributes: {cidr: 10.0.0.0/16}
      - kind: subnet
        name: a
        attributes:
          network_id: ${network.main.id}
        depends_on: [network.main]
    outputs:
      subnet_id: ${subnet.a.id}
    providers:
      network: {type: memory}

A string that is exactly ``${kind.name.attribute}`` becomes a reference;
any other string is kept as a literal.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

import structlog
import yaml

from landform.core.errors import DeclarationError
from landform.model import Declaration, ResourceKey, ResourceSpec, parse_references

logger = structlog.get_logger()

_TOP_LEVEL = {"resources", "outputs", "providers"}


def _resource(entry: Any, index: int, source: str) -> ResourceSpec:
    where = {"file": source, "index": index}
    if not isinstance(entry, Mapping):
        raise DeclarationError(f"Resource #{index} must be a mapping", where)

    kind = entry.get("kind")
    name = entry.get("name")
    if not isinstance(kind, str) or not kind:
        raise DeclarationError(f"Resource #{index} is missing 'kind'", where)
    if not isinstance(name, str) or not name:
        raise DeclarationError(f"Resource #{index} is missing 'name'", where)
    where["resource"] = f"{kind}.{name}"

    unknown = set(entry) - {"kind", "name", "attributes", "depends_on"}
    if unknown:
        raise DeclarationError(
            f"Resource {kind}.{name} has unknown fields: {', '.join(sorted(unknown))}",
            where,
        )

    attributes = entry.get("attributes") or {}
    if not isinstance(attributes, Mapping):
        raise DeclarationError(f"Attributes of {kind}.{name} must be a mapping", where)

    depends_on = entry.get("depends_on") or []
    if not isinstance(depends_on, list):
        raise DeclarationError(f"depends_on of {kind}.{name} must be a list", where)
    try:
        hints = [ResourceKey.parse(str(dep)) for dep in depends_on]
    except ValueError as e:
        raise DeclarationError(str(e), where) from e

    return ResourceSpec(
        kind=kind,
        name=name,
        attributes=parse_references(dict(attributes)),
        depends_on=frozenset(hints),
    )


def parse_declaration(data: Any, source: str = "<memory>") -> Declaration:
    """Build a Declaration from already-parsed YAML/JSON data."""
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise DeclarationError("Declaration must be a mapping", {"file": source})

    unknown = set(data) - _TOP_LEVEL
    if unknown:
        raise DeclarationError(
            f"Unknown top-level sections: {', '.join(sorted(unknown))}",
            {"file": source},
        )

    resources = data.get("resources") or []
    if not isinstance(resources, list):
        raise DeclarationError("'resources' must be a list", {"file": source})
    outputs = data.get("outputs") or {}
    if not isinstance(outputs, Mapping):
        raise DeclarationError("'outputs' must be a mapping", {"file": source})
    providers = data.get("providers") or {}
    if not isinstance(providers, Mapping) or not all(
        isinstance(options, Mapping) for options in providers.values()
    ):
        raise DeclarationError("'providers' must map kinds to option mappings", {"file": source})

    declaration = Declaration(
        resources=tuple(_resource(entry, i, source) for i, entry in enumerate(resources)),
        outputs={str(k): parse_references(v) for k, v in outputs.items()},
        providers={str(k): dict(v) for k, v in providers.items()},
    )
    logger.debug(
        "declaration_loaded",
        file=source,
        resources=len(declaration.resources),
        outputs=len(declaration.outputs),
    )
    return declaration


def load_declaration(path: str | Path) -> Declaration:
    """Load a declaration file.

    Raises:
        DeclarationError: the file is missing, is not valid YAML, or does
            not follow the declaration format
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise DeclarationError(f"Declaration file not found: {path}", {"file": str(path)}) from e
    except yaml.YAMLError as e:
        raise DeclarationError(f"Invalid YAML in {path}: {e}", {"file": str(path)}) from e
    return parse_declaration(data, str(path))
