"""
Engine facade tying the reconciliation components together.

plan:  declaration -> graph -> (state snapshot) -> plan
apply: plan as above, recover leftovers of interrupted runs, execute,
       then resolve outputs against the resulting state.
"""

from __future__ import annotations

import time
import uuid
from typing import Any, Awaitable, Callable, Mapping, TypeVar

import structlog

from landform.config import Settings, get_settings
from landform.core.errors import ConcurrencyError, LandformError, ProviderError, ResourceNotFound
from landform.execution import ApplyReport, ApplyResult, CancellationToken, Executor, Outcome
from landform.graph import Graph, build_graph
from landform.logging import bind_run, clear_run
from landform.model import Declaration, ResourceKey, ResourceRef, resolve_value
from landform.planning import Action, DestroyPolicy, Plan, Planner
from landform.providers.base import ProviderAdapterSet
from landform.providers.retry import RetryPolicy, call_with_retry
from landform.state.base import StateStore
from landform.state.models import Intent, StateRecord, StateSnapshot

logger = structlog.get_logger()

T = TypeVar("T")

ORPHAN_REASON = "created by an interrupted run, no longer declared"


class Engine:
    """Plans and applies declarations against one state store."""

    def __init__(
        self,
        store: StateStore,
        adapters: ProviderAdapterSet,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.adapters = adapters
        self.settings = settings or get_settings()

    @property
    def destroy_policy(self) -> DestroyPolicy:
        return DestroyPolicy(self.settings.destroy_policy)

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            base_seconds=self.settings.retry_base_seconds,
            cap_seconds=self.settings.retry_cap_seconds,
            max_attempts=self.settings.retry_max_attempts,
        )

    def _planner(self) -> Planner:
        return Planner(
            destroy_policy=self.destroy_policy,
            retry=self.retry_policy,
            read_timeout=self.settings.operation_timeout_seconds,
        )

    async def _call(self, fn: Callable[[], Awaitable[T]]) -> T:
        return await call_with_retry(
            fn, self.retry_policy, timeout=self.settings.operation_timeout_seconds
        )

    async def plan(self, declaration: Declaration, *, refresh: bool = False) -> Plan:
        """Compute the plan for ``declaration``. Makes no changes."""
        graph = build_graph(declaration.resources)
        return await self._planner().plan(
            graph, self.store, adapters=self.adapters, refresh_state=refresh
        )

    async def pending_intents(self) -> list[Intent]:
        """Intents left in the store; the next apply settles them."""
        return pending_intents(await self.store.load())

    async def apply(
        self,
        declaration: Declaration,
        *,
        cancel: CancellationToken | None = None,
        timeout: float | None = None,
        refresh: bool = False,
    ) -> ApplyReport:
        """Reconcile actual state with ``declaration``.

        Configuration errors (cycles, unresolved references, missing
        adapters) are raised before any provider call. Provider failures
        are reported per resource in the returned report.
        """
        started = time.monotonic()
        run_id = uuid.uuid4().hex
        bind_run(run_id)
        token = cancel or CancellationToken()
        timeout = timeout if timeout is not None else self.settings.run_timeout_seconds
        try:
            graph = build_graph(declaration.resources)
            snapshot = await self.store.load()
            planner = self._planner()
            plan = await planner.plan_snapshot(graph, snapshot, adapters=self.adapters)

            recovered: list[ApplyResult] = []
            if snapshot.intents:
                recovered = await self._recover(graph, snapshot, run_id)
                snapshot = await self.store.load()
                plan = await planner.plan_snapshot(graph, snapshot, adapters=self.adapters)
            if refresh:
                plan = await planner.plan_snapshot(
                    graph, snapshot, adapters=self.adapters, refresh_state=True
                )

            logger.info("apply_started", **plan.summary(), blocked=len(plan.blocked))
            if timeout:
                token.cancel_after(timeout)
            executor = Executor(
                self.store,
                concurrency=self.settings.concurrency,
                retry=self.retry_policy,
                operation_timeout=self.settings.operation_timeout_seconds,
                run_id=run_id,
            )
            results = await executor.apply(
                plan, self.adapters, cancel=token, intents=snapshot.intents
            )

            final = await self.store.load()
            report = ApplyReport(
                results=recovered + results,
                outputs=self._outputs(declaration.outputs, graph, final),
                cancelled=token.cancelled,
                duration_seconds=round(time.monotonic() - started, 3),
            )
            logger.info(
                "apply_finished",
                **report.summary(),
                cancelled=report.cancelled,
                duration_seconds=report.duration_seconds,
            )
            return report
        finally:
            token.dispose()
            clear_run()

    async def _recover(
        self,
        graph: Graph,
        snapshot: StateSnapshot,
        run_id: str,
    ) -> list[ApplyResult]:
        """Settle intents left behind by interrupted runs.

        Each intent is settled under the resource's lease. An intent whose
        lease is held belongs to a run still in progress and is left alone.
        Returns results for orphaned creates that were cleaned up or could
        not be.
        """
        settled: list[ApplyResult] = []
        for key, intent in sorted(snapshot.intents.items()):
            log = logger.bind(resource=str(key), action=intent.action, intent_run=intent.run_id)
            try:
                async with self.store.lock(key, run_id):
                    result = await self._settle(key, intent, graph, log)
            except ConcurrencyError as exc:
                log.info("intent_in_flight", error=exc.message)
                continue
            if result is not None:
                settled.append(result)
        return settled

    async def _settle(
        self,
        key: ResourceKey,
        intent: Intent,
        graph: Graph,
        log: Any,
    ) -> ApplyResult | None:
        record = await self.store.get(key)

        if intent.action == Action.CREATE.value:
            if key in graph:
                log.warning("intent_recovered", resolution="reuse_idempotency_key")
                return None
            if record is not None:
                # the planned delete removes the record and the intent with it
                log.info("intent_recovered", resolution="delete_planned")
                return None
            return await self._delete_orphan(key, intent, log)

        if record is None:
            await self.store.clear_intent(key)
            log.info("intent_recovered", resolution="no_record")
            return None

        try:
            exists = await self._exists(record)
        except ProviderError as exc:
            log.warning("intent_unsettled", error=exc.message)
            return None
        if exists:
            await self.store.clear_intent(key)
            log.info("intent_recovered", resolution="resource_present")
        else:
            await self.store.remove(key, expected_serial=record.serial)
            log.warning("intent_recovered", resolution="record_dropped")
        return None

    async def _delete_orphan(self, key: ResourceKey, intent: Intent, log: Any) -> ApplyResult:
        """Delete a resource whose create was interrupted and is no longer declared.

        Replaying the create with the recorded idempotency key returns the
        id of the resource the interrupted run created.
        """
        provider_id: str | None = None
        try:
            adapter = self.adapters.for_kind(key.kind)
            provider_id = await self._call(
                lambda: adapter.create(
                    dict(intent.attributes), idempotency_key=intent.idempotency_key
                )
            )
            try:
                await self._call(lambda: adapter.delete(provider_id))
            except ResourceNotFound:
                pass
        except LandformError as exc:
            log.error("orphan_unsettled", error_type=type(exc).__name__, error=exc.message)
            return ApplyResult(
                key=key,
                action=Action.DELETE,
                outcome=Outcome.FAILED,
                error=exc.message,
                error_type=type(exc).__name__,
                provider_id=provider_id,
                reason=ORPHAN_REASON,
            )

        await self.store.clear_intent(key)
        log.warning("intent_recovered", resolution="orphan_deleted", provider_id=provider_id)
        return ApplyResult(
            key=key,
            action=Action.DELETE,
            outcome=Outcome.SUCCESS,
            provider_id=provider_id,
            reason=ORPHAN_REASON,
        )

    async def _exists(self, record: StateRecord) -> bool:
        adapter = self.adapters.for_kind(record.kind)
        try:
            await self._call(lambda: adapter.read(record.provider_id))
        except ResourceNotFound:
            return False
        return True

    def _outputs(
        self,
        outputs: Mapping[str, Any],
        graph: Graph,
        snapshot: StateSnapshot,
    ) -> dict[str, Any]:
        resolved: dict[str, Any] = {}

        def lookup(ref: ResourceRef) -> Any:
            record = snapshot.records.get(ref.key)
            if record is None or ref.key not in graph:
                raise KeyError(str(ref))
            return record.value(ref.attribute)

        for name, value in outputs.items():
            try:
                resolved[name] = resolve_value(value, lookup)
            except KeyError as exc:
                logger.warning("output_unresolved", output=name, reference=str(exc.args[0]))
        return resolved


def pending_intents(snapshot: StateSnapshot) -> list[Intent]:
    """Intents in key order, for reporting interrupted runs."""
    return [snapshot.intents[key] for key in sorted(snapshot.intents)]
