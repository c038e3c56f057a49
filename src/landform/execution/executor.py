"""
Plan executor.

Runs plan items on a bounded pool of asyncio worker tasks fed by a ready
queue. An item is queued once every key in its ``after`` list has
succeeded (or needed no change); independent chains therefore run
concurrently while each chain runs strictly in order.

Per item:
    1. take the per-resource lease from the state store
    2. check the stored serial still matches the planned one
    3. write an intent, call the provider (transient errors retried)
    4. read the resource back, commit the state record, clear the intent
    5. release the lease

A failed or skipped item marks every not-yet-started dependent as skipped.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Awaitable, Callable, Mapping, TypeVar

import structlog

from landform.core.errors import (
    LandformError,
    ProviderError,
    ResourceNotFound,
    StateCorruptionError,
    UnresolvedReferenceError,
)
from landform.execution.cancellation import CancellationToken
from landform.execution.results import ApplyResult, Outcome
from landform.model import ResourceKey, ResourceRef, resolve_value
from landform.planning.fingerprint import compute_fingerprint
from landform.planning.types import Action, DestroyPolicy, Plan, PlanItem
from landform.providers.base import ProviderAdapter, ProviderAdapterSet
from landform.providers.retry import RetryPolicy, call_with_retry
from landform.state.base import StateStore, check_serial
from landform.state.models import Intent, StateRecord

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_CONCURRENCY = 10


class Executor:
    """Applies plans against provider adapters and records state."""

    def __init__(
        self,
        store: StateStore,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        retry: RetryPolicy | None = None,
        operation_timeout: float | None = None,
        run_id: str | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.store = store
        self.concurrency = concurrency
        self.retry = retry or RetryPolicy()
        self.operation_timeout = operation_timeout
        self.run_id = run_id or uuid.uuid4().hex

    async def apply(
        self,
        plan: Plan,
        adapters: ProviderAdapterSet,
        *,
        cancel: CancellationToken | None = None,
        intents: Mapping[ResourceKey, Intent] | None = None,
    ) -> list[ApplyResult]:
        """Execute ``plan``; returns one result per item and blocked resource.

        ``intents`` are leftovers from an interrupted run; a create for the
        same resource reuses the recorded idempotency key.
        """
        run = _Run(self, plan, adapters, cancel or CancellationToken(), dict(intents or {}))
        return await run.execute()


class _Run:
    """State of a single apply run."""

    def __init__(
        self,
        executor: Executor,
        plan: Plan,
        adapters: ProviderAdapterSet,
        cancel: CancellationToken,
        intents: dict[ResourceKey, Intent],
    ) -> None:
        self.executor = executor
        self.store = executor.store
        self.plan = plan
        self.adapters = adapters
        self.cancel = cancel
        self.intents = intents
        self.items = {item.key: item for item in plan.items}
        self.results: dict[ResourceKey, ApplyResult] = {}
        self.bindings: dict[ResourceKey, StateRecord] = {
            item.key: item.prior
            for item in plan.items
            if item.prior is not None and item.action is not Action.DELETE
        }
        self.dependents: dict[ResourceKey, list[ResourceKey]] = {key: [] for key in self.items}
        for item in plan.items:
            for dep in item.after:
                if dep in self.dependents:
                    self.dependents[dep].append(item.key)
        self._waiting: dict[ResourceKey, set[ResourceKey]] = {}
        self._started: set[ResourceKey] = set()
        self._queue: asyncio.Queue[PlanItem | None] = asyncio.Queue()
        self._unfinished: set[ResourceKey] = set()
        self._phase_done = asyncio.Event()

    async def execute(self) -> list[ApplyResult]:
        for key, reason in self.plan.blocked.items():
            self.results[key] = ApplyResult(
                key=key,
                action=None,
                outcome=Outcome.FAILED,
                error=reason,
                error_type=StateCorruptionError.__name__,
            )

        if self.plan.destroy_policy is DestroyPolicy.SEPARATE:
            phases = [
                [i for i in self.plan.items if i.action is not Action.DELETE],
                [i for i in self.plan.items if i.action is Action.DELETE],
            ]
        else:
            phases = [list(self.plan.items)]

        for phase in phases:
            if phase:
                await self._run_phase(phase)

        ordered = [self.results[item.key] for item in self.plan.items]
        ordered.extend(self.results[key] for key in self.plan.blocked)
        return ordered

    async def _run_phase(self, phase: list[PlanItem]) -> None:
        self._unfinished = {item.key for item in phase if item.key not in self.results}
        self._phase_done.clear()
        workers = [
            asyncio.create_task(self._worker())
            for _ in range(min(self.executor.concurrency, len(phase)))
        ]
        for item in phase:
            if item.key in self.results:
                continue
            unresolved: set[ResourceKey] = set()
            failed_dep = None
            for dep in item.after:
                if dep in self.results:
                    if not self.results[dep].succeeded:
                        failed_dep = dep
                        break
                elif dep in self.items:
                    unresolved.add(dep)
            if failed_dep is not None:
                self._skip(item.key, failed_dep)
            elif unresolved:
                self._waiting[item.key] = unresolved
            else:
                self._release(item)
        try:
            if self._unfinished:
                await self._phase_done.wait()
        finally:
            for _ in workers:
                self._queue.put_nowait(None)
            await asyncio.gather(*workers)

    def _release(self, item: PlanItem) -> None:
        if self.cancel.cancelled:
            self._finish(self._cancelled(item))
        else:
            self._queue.put_nowait(item)

    def _cancelled(self, item: PlanItem) -> ApplyResult:
        return ApplyResult(
            key=item.key,
            action=item.action,
            outcome=Outcome.SKIPPED,
            reason=f"run cancelled ({self.cancel.reason})",
        )

    def _skip(self, key: ResourceKey, because: ResourceKey) -> None:
        if key in self.results or key in self._started:
            return
        item = self.items[key]
        if self.cancel.cancelled:
            self._finish(self._cancelled(item))
            return
        logger.info("resource_skipped", resource=str(key), dependency=str(because))
        self._finish(
            ApplyResult(
                key=key,
                action=item.action,
                outcome=Outcome.SKIPPED,
                reason=f"dependency {because} did not succeed",
            )
        )

    def _finish(self, result: ApplyResult) -> None:
        key = result.key
        self.results[key] = result
        self._waiting.pop(key, None)
        self._unfinished.discard(key)
        for dependent in self.dependents.get(key, ()):
            if dependent in self.results:
                continue
            if not result.succeeded:
                self._skip(dependent, key)
                continue
            waiting = self._waiting.get(dependent)
            if waiting is None:
                # dependent belongs to a later phase
                continue
            waiting.discard(key)
            if not waiting:
                del self._waiting[dependent]
                self._release(self.items[dependent])
        if not self._unfinished:
            self._phase_done.set()

    async def _worker(self) -> None:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            if self.cancel.cancelled:
                self._finish(self._cancelled(item))
                continue
            self._started.add(item.key)
            result = await self._execute(item)
            self._finish(result)

    async def _execute(self, item: PlanItem) -> ApplyResult:
        log = logger.bind(resource=str(item.key), action=item.action.value)
        if item.action is Action.NOOP:
            prior = item.prior
            return ApplyResult(
                key=item.key,
                action=item.action,
                outcome=Outcome.NOOP,
                provider_id=prior.provider_id if prior else None,
                reason=item.reason,
            )

        attempts = [0]
        try:
            adapter = self.adapters.for_kind(item.key.kind)
            async with self.store.lock(item.key, self.executor.run_id):
                check_serial(item.key, await self.store.get(item.key), item.expected_serial)
                if item.action is Action.DELETE:
                    result = await self._delete(item, adapter, attempts)
                else:
                    result = await self._apply(item, adapter, attempts)
        except LandformError as exc:
            log.error(
                "resource_failed",
                error_type=type(exc).__name__,
                error=exc.message,
                attempts=attempts[0],
            )
            return ApplyResult(
                key=item.key,
                action=item.action,
                outcome=Outcome.FAILED,
                error=exc.message,
                error_type=type(exc).__name__,
                attempts=attempts[0],
            )
        except Exception as exc:
            log.error(
                "resource_failed",
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=True,
            )
            return ApplyResult(
                key=item.key,
                action=item.action,
                outcome=Outcome.FAILED,
                error=str(exc),
                error_type=type(exc).__name__,
                attempts=attempts[0],
            )

        log.info(
            "resource_applied",
            outcome=result.outcome.value,
            provider_id=result.provider_id,
            attempts=result.attempts,
        )
        return result

    def _bind(self, item: PlanItem) -> dict[str, Any]:
        """Substitute refs with values from dependencies applied so far."""
        assert item.spec is not None

        def lookup(ref: ResourceRef) -> Any:
            record = self.bindings.get(ref.key)
            if record is None:
                raise UnresolvedReferenceError(item.key, ref.key)
            try:
                return record.value(ref.attribute)
            except KeyError:
                raise UnresolvedReferenceError(item.key, ref.key, ref.attribute) from None

        return resolve_value(item.spec.attributes, lookup)

    async def _call(
        self,
        fn: Callable[[], Awaitable[T]],
        attempts: list[int] | None = None,
    ) -> T:
        return await call_with_retry(
            fn,
            self.executor.retry,
            timeout=self.executor.operation_timeout,
            stop_when=lambda: self.cancel.cancelled,
            attempts=attempts,
        )

    async def _read_back(
        self, adapter: ProviderAdapter, provider_id: str, key: ResourceKey
    ) -> dict[str, Any]:
        try:
            return await self._call(lambda: adapter.read(provider_id))
        except ProviderError as exc:
            logger.warning("read_back_failed", resource=str(key), error=exc.message)
            return {}

    def _idempotency_key(self, item: PlanItem) -> str:
        leftover = self.intents.get(item.key)
        if leftover is not None and leftover.action == Action.CREATE.value:
            return leftover.idempotency_key
        return f"{self.executor.run_id}:{item.key}"

    async def _apply(
        self, item: PlanItem, adapter: ProviderAdapter, attempts: list[int]
    ) -> ApplyResult:
        assert item.spec is not None
        attributes = self._bind(item)
        fingerprint = compute_fingerprint(attributes)
        prior = item.prior

        if (
            item.action is Action.UPDATE
            and item.pending
            and prior is not None
            and fingerprint == prior.fingerprint
        ):
            # Pending values turned out unchanged; nothing to send.
            return ApplyResult(
                key=item.key,
                action=item.action,
                outcome=Outcome.NOOP,
                provider_id=prior.provider_id,
                reason="dependency values unchanged",
            )

        intent = Intent(
            kind=item.key.kind,
            name=item.key.name,
            action=item.action.value,
            idempotency_key=self._idempotency_key(item),
            provider_id=prior.provider_id if prior and item.action is Action.UPDATE else None,
            run_id=self.executor.run_id,
            attributes=attributes if item.action is Action.CREATE else {},
        )
        await self.store.write_intent(intent)

        try:
            if item.action is Action.CREATE:
                provider_id = await self._call(
                    lambda: adapter.create(attributes, idempotency_key=intent.idempotency_key),
                    attempts,
                )
            else:
                assert prior is not None
                provider_id = prior.provider_id
                await self._call(lambda: adapter.update(provider_id, attributes), attempts)
        except ProviderError:
            if item.action is not Action.CREATE:
                await self.store.clear_intent(item.key)
            raise

        observed = await self._read_back(adapter, provider_id, item.key)
        record = StateRecord(
            kind=item.key.kind,
            name=item.key.name,
            provider_id=provider_id,
            fingerprint=fingerprint,
            attributes=attributes,
            observed=observed,
            dependencies=[str(k) for k in item.spec.dependency_keys()],
        )
        stored = await asyncio.shield(
            self.store.commit(record, expected_serial=item.expected_serial)
        )
        self.bindings[item.key] = stored
        return ApplyResult(
            key=item.key,
            action=item.action,
            outcome=Outcome.SUCCESS,
            provider_id=provider_id,
            attempts=attempts[0],
            reason=item.reason,
        )

    async def _delete(
        self, item: PlanItem, adapter: ProviderAdapter, attempts: list[int]
    ) -> ApplyResult:
        prior = item.prior
        assert prior is not None
        await self.store.write_intent(
            Intent(
                kind=item.key.kind,
                name=item.key.name,
                action=Action.DELETE.value,
                idempotency_key=f"{self.executor.run_id}:{item.key}",
                provider_id=prior.provider_id,
                run_id=self.executor.run_id,
            )
        )
        try:
            await self._call(lambda: adapter.delete(prior.provider_id), attempts)
        except ResourceNotFound:
            logger.info(
                "resource_already_gone",
                resource=str(item.key),
                provider_id=prior.provider_id,
            )
        except ProviderError:
            await self.store.clear_intent(item.key)
            raise
        await asyncio.shield(self.store.remove(item.key, expected_serial=item.expected_serial))
        self.bindings.pop(item.key, None)
        return ApplyResult(
            key=item.key,
            action=item.action,
            outcome=Outcome.SUCCESS,
            provider_id=prior.provider_id,
            attempts=attempts[0],
            reason=item.reason,
        )
