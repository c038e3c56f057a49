"""
Differ / planner.

Compares desired resources against last-known state and classifies each
resource as create, update, delete or no-op:

    no record                               -> create
    record, dependency values still pending -> update (re-checked at apply)
    record, fingerprint differs             -> update
    record, fingerprint equal               -> no-op
    record, resource no longer declared     -> delete

A reference can be resolved at plan time when its target is a no-op (any
attribute, from the state record) or an update that only needs the target's
provider id (ids survive updates). Everything else is bound at apply time
once the dependency has been applied.
"""

from __future__ import annotations

import asyncio
import heapq
from typing import Any, Mapping

import structlog

from landform.core.errors import PlanError, ResourceNotFound
from landform.graph import Graph
from landform.model import ID_ATTRIBUTE, ResourceKey, ResourceRef, ResourceSpec, resolve_value
from landform.planning.fingerprint import compute_fingerprint
from landform.planning.types import Action, DestroyPolicy, Plan, PlanItem
from landform.providers.base import ProviderAdapterSet
from landform.providers.retry import RetryPolicy, call_with_retry
from landform.state.base import StateStore
from landform.state.models import StateRecord, StateSnapshot

logger = structlog.get_logger()

# Marker for a resource that a refresh found missing on the provider side.
VANISHED = None


class _Pending(Exception):
    def __init__(self, ref: ResourceRef):
        self.ref = ref


def _resolve_at_plan_time(
    spec: ResourceSpec,
    actions: Mapping[ResourceKey, Action],
    snapshot: StateSnapshot,
) -> tuple[dict[str, Any] | None, tuple[ResourceRef, ...]]:
    pending: list[ResourceRef] = []

    def lookup(ref: ResourceRef) -> Any:
        action = actions.get(ref.key)
        record = snapshot.records.get(ref.key)
        if record is None or action is None:
            raise _Pending(ref)
        if action is Action.UPDATE and ref.attribute == ID_ATTRIBUTE:
            return record.provider_id
        if action is not Action.NOOP:
            raise _Pending(ref)
        try:
            return record.value(ref.attribute)
        except KeyError:
            raise PlanError(
                f"{spec.key} references {ref.key}.{ref.attribute}, "
                f"which is not an attribute of {ref.key}",
                {"resource": str(spec.key), "reference": str(ref)},
            ) from None

    def collecting(ref: ResourceRef) -> Any:
        try:
            return lookup(ref)
        except _Pending as exc:
            pending.append(exc.ref)
            return None

    resolved = resolve_value(spec.attributes, collecting)
    if pending:
        return None, tuple(pending)
    return resolved, ()


def _drifted(record: StateRecord, observed: Mapping[str, Any]) -> list[str]:
    """Applied attribute names whose observed value differs."""
    return sorted(
        name
        for name, value in record.attributes.items()
        if name in observed and observed[name] != value
    )


def _delete_order(
    orphans: Mapping[ResourceKey, StateRecord],
) -> list[ResourceKey]:
    """Orphaned records ordered so consumers are deleted before what they use."""
    consumers: dict[ResourceKey, int] = {key: 0 for key in orphans}
    for record in orphans.values():
        for dep in record.dependency_keys():
            if dep in consumers:
                consumers[dep] += 1

    ready = [key for key, count in consumers.items() if count == 0]
    heapq.heapify(ready)
    order: list[ResourceKey] = []
    while ready:
        key = heapq.heappop(ready)
        order.append(key)
        for dep in orphans[key].dependency_keys():
            if dep in consumers:
                consumers[dep] -= 1
                if consumers[dep] == 0:
                    heapq.heappush(ready, dep)

    leftover = sorted(set(orphans) - set(order))
    if leftover:
        logger.warning("state_dependency_cycle", resources=[str(k) for k in leftover])
        order.extend(leftover)
    return order


def build_plan(
    graph: Graph,
    snapshot: StateSnapshot,
    *,
    destroy_policy: DestroyPolicy = DestroyPolicy.COMBINED,
    observations: Mapping[ResourceKey, dict[str, Any] | None] | None = None,
) -> Plan:
    """Diff the graph against a state snapshot. Pure; performs no I/O.

    ``observations`` holds refreshed provider attributes per recorded key;
    ``VANISHED`` marks resources the provider no longer has.
    """
    observations = observations or {}
    actions: dict[ResourceKey, Action] = {}
    items: list[PlanItem] = []
    blocked = dict(snapshot.corrupt)

    for key in graph.topological_order():
        if key in blocked:
            continue
        spec = graph.spec(key)
        record = snapshot.records.get(key)
        after = graph.dependencies(key)

        if record is None:
            action, reason, fingerprint, pending = Action.CREATE, "not in state", None, ()
        elif key in observations and observations[key] is VANISHED:
            action, reason, fingerprint, pending = Action.CREATE, "missing remotely", None, ()
        else:
            resolved, pending = _resolve_at_plan_time(spec, actions, snapshot)
            fingerprint = compute_fingerprint(resolved) if resolved is not None else None
            drift = _drifted(record, observations[key] or {}) if key in observations else []
            if pending:
                action = Action.UPDATE
                reason = "depends on values known after apply"
            elif fingerprint != record.fingerprint:
                action, reason = Action.UPDATE, "attributes changed"
            elif drift:
                action, reason = Action.UPDATE, f"drift detected in {', '.join(drift)}"
            else:
                action, reason = Action.NOOP, "up to date"

        actions[key] = action
        items.append(
            PlanItem(
                key=key,
                action=action,
                reason=reason,
                spec=spec,
                prior=record,
                desired_fingerprint=fingerprint,
                pending=tuple(pending),
                after=after,
            )
        )

    orphans = {
        key: record for key, record in snapshot.records.items() if key not in graph
    }
    former_consumers: dict[ResourceKey, list[ResourceKey]] = {key: [] for key in orphans}
    for key, record in snapshot.records.items():
        for dep in record.dependency_keys():
            if dep in former_consumers:
                former_consumers[dep].append(key)

    for key in _delete_order(orphans):
        # Consumers still in state are either being deleted or re-applied
        # without the reference; both must finish first.
        after = tuple(
            consumer
            for consumer in sorted(former_consumers[key])
            if consumer in orphans or consumer in actions
        )
        items.append(
            PlanItem(
                key=key,
                action=Action.DELETE,
                reason="no longer declared",
                prior=orphans[key],
                after=after,
            )
        )

    plan = Plan(items=tuple(items), blocked=blocked, destroy_policy=destroy_policy)
    logger.debug("plan_built", **plan.summary(), blocked=len(blocked))
    return plan


async def refresh(
    snapshot: StateSnapshot,
    adapters: ProviderAdapterSet,
    *,
    retry: RetryPolicy | None = None,
    timeout: float | None = None,
) -> dict[ResourceKey, dict[str, Any] | None]:
    """Read every recorded resource back from its provider.

    Transient read failures are retried under ``retry``.
    """
    policy = retry or RetryPolicy()

    async def _read(record: StateRecord) -> tuple[ResourceKey, dict[str, Any] | None]:
        adapter = adapters.for_kind(record.kind)
        try:
            observed = await call_with_retry(
                lambda: adapter.read(record.provider_id), policy, timeout=timeout
            )
            return record.key, observed
        except ResourceNotFound:
            logger.warning("resource_vanished", resource=str(record.key))
            return record.key, VANISHED

    results = await asyncio.gather(*(_read(r) for r in snapshot.records.values()))
    observations = dict(results)
    for key, observed in observations.items():
        if observed is not VANISHED:
            record = snapshot.records[key]
            snapshot.records[key] = record.model_copy(update={"observed": observed})
    return observations


def ensure_adapters(plan: Plan, adapters: ProviderAdapterSet) -> None:
    """Fail before any provider call if a planned kind has no adapter."""
    for item in plan.items:
        adapters.for_kind(item.key.kind)


class Planner:
    """Loads state and builds plans."""

    def __init__(
        self,
        *,
        destroy_policy: DestroyPolicy = DestroyPolicy.COMBINED,
        retry: RetryPolicy | None = None,
        read_timeout: float | None = None,
    ) -> None:
        self.destroy_policy = destroy_policy
        self.retry = retry or RetryPolicy()
        self.read_timeout = read_timeout

    async def plan(
        self,
        graph: Graph,
        store: StateStore,
        *,
        adapters: ProviderAdapterSet | None = None,
        refresh_state: bool = False,
    ) -> Plan:
        snapshot = await store.load()
        return await self.plan_snapshot(
            graph, snapshot, adapters=adapters, refresh_state=refresh_state
        )

    async def plan_snapshot(
        self,
        graph: Graph,
        snapshot: StateSnapshot,
        *,
        adapters: ProviderAdapterSet | None = None,
        refresh_state: bool = False,
    ) -> Plan:
        observations = None
        if refresh_state:
            if adapters is None:
                raise ValueError("Refreshing state requires provider adapters")
            observations = await refresh(
                snapshot, adapters, retry=self.retry, timeout=self.read_timeout
            )
        plan = build_plan(
            graph,
            snapshot,
            destroy_policy=self.destroy_policy,
            observations=observations,
        )
        if adapters is not None:
            ensure_adapters(plan, adapters)
        return plan
