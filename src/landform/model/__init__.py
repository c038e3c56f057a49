"""Resource model: specs, keys, references and value helpers."""

from landform.model.resources import (
    ID_ATTRIBUTE,
    Declaration,
    ResourceKey,
    ResourceRef,
    ResourceSpec,
    iter_refs,
    lookup_path,
    parse_reference,
    parse_references,
    resolve_value,
)

__all__ = [
    "ID_ATTRIBUTE",
    "Declaration",
    "ResourceKey",
    "ResourceRef",
    "ResourceSpec",
    "iter_refs",
    "lookup_path",
    "parse_reference",
    "parse_references",
    "resolve_value",
]
