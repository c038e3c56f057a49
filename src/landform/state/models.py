"""State records persisted per applied resource."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from landform.model import ID_ATTRIBUTE, ResourceKey, lookup_path


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StateRecord(BaseModel):
    """Last-known actual state of one applied resource."""

    kind: str
    name: str
    provider_id: str
    fingerprint: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    observed: dict[str, Any] = Field(default_factory=dict)
    dependencies: list[str] = Field(default_factory=list)
    serial: int = 0
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(self.kind, self.name)

    def dependency_keys(self) -> list[ResourceKey]:
        return [ResourceKey.parse(dep) for dep in self.dependencies]

    def value(self, attribute: str) -> Any:
        """Value of ``attribute`` as last seen; provider-observed values win.

        Raises KeyError when neither observed nor applied attributes have it.
        """
        if attribute == ID_ATTRIBUTE:
            return self.provider_id
        try:
            return lookup_path(self.observed, attribute)
        except KeyError:
            return lookup_path(self.attributes, attribute)


class Intent(BaseModel):
    """Write-ahead marker for a provider mutation in flight.

    Cleared together with the state write; a leftover intent means the run
    stopped between the provider call and the state write. Create intents
    keep the bound attributes so the create can be replayed.
    """

    kind: str
    name: str
    action: str
    idempotency_key: str
    provider_id: str | None = None
    run_id: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=_utcnow)

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(self.kind, self.name)


@dataclass
class StateSnapshot:
    """Full state as read at plan time."""

    records: dict[ResourceKey, StateRecord] = field(default_factory=dict)
    corrupt: dict[ResourceKey, str] = field(default_factory=dict)
    intents: dict[ResourceKey, Intent] = field(default_factory=dict)

    def get(self, key: ResourceKey) -> StateRecord | None:
        return self.records.get(key)
