"""Plan types: actions, plan items and the plan itself."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Mapping

from landform.model import ResourceKey, ResourceRef, ResourceSpec
from landform.state.models import StateRecord


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "no-op"


class DestroyPolicy(str, Enum):
    """When deletes run relative to creates and updates."""

    COMBINED = "combined"  # one schedule, deletes ordered by their own edges
    SEPARATE = "separate"  # deletes start once every other item is terminal


@dataclass(frozen=True)
class PlanItem:
    """One intended operation. Immutable once emitted by the planner."""

    key: ResourceKey
    action: Action
    reason: str
    spec: ResourceSpec | None = None
    prior: StateRecord | None = None
    desired_fingerprint: str | None = None
    pending: tuple[ResourceRef, ...] = ()
    after: tuple[ResourceKey, ...] = ()

    @property
    def expected_serial(self) -> int | None:
        return self.prior.serial if self.prior is not None else None

    @property
    def is_change(self) -> bool:
        return self.action is not Action.NOOP

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource": str(self.key),
            "action": self.action.value,
            "reason": self.reason,
            "after": [str(k) for k in self.after],
            "pending": [str(r) for r in self.pending],
        }


@dataclass(frozen=True)
class Plan:
    """Ordered, immutable list of plan items.

    Items are a valid linearization of the dependency graph: creates,
    updates and no-ops in topological order, then deletes with dependents
    before their dependencies. ``blocked`` lists resources whose state
    record is corrupt; they are neither planned nor deleted.
    """

    items: tuple[PlanItem, ...] = ()
    blocked: Mapping[ResourceKey, str] = field(default_factory=dict)
    destroy_policy: DestroyPolicy = DestroyPolicy.COMBINED

    def __iter__(self) -> Iterator[PlanItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __getitem__(self, index: int) -> PlanItem:
        return self.items[index]

    def item(self, key: ResourceKey) -> PlanItem | None:
        return next((i for i in self.items if i.key == key), None)

    def keys(self) -> list[ResourceKey]:
        return [item.key for item in self.items]

    @property
    def changes(self) -> list[PlanItem]:
        return [item for item in self.items if item.is_change]

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    def summary(self) -> dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for item in self.items:
            counts[item.action.value] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "blocked": {str(k): v for k, v in self.blocked.items()},
            "summary": self.summary(),
            "destroy_policy": self.destroy_policy.value,
        }
