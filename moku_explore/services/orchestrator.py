"""
================================================================================
Moku Explore - Request Orchestrator
================================================================================
Concurrent fan-out with cancellation and streaming publication.

Flow for one batch:
  1. Skip entirely if the batch signature matches the previous batch
  2. Cancel the previous scope for this query shape, open a new one
  3. Start every item at once (one coroutine per category / catalog)
  4. Publish each fulfilled item the moment it resolves (completion order)
  5. Log and drop failed items; siblings are unaffected
  6. Before EVERY publication, check the scope is still alive - a
     superseded batch never touches shared state again

Failures of single items never escape this module. Only the caller's own
foundational loads can put the feed into an error state.
================================================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Hashable, Iterable, List, Optional, Tuple

from sources.client import QueryCancelled

from ..cache import CacheStore
from ..cancellation import CancellationScope, ScopeSlot

logger = logging.getLogger(__name__)

Fetch = Callable[[Any, CancellationScope], Awaitable[Any]]
OnResult = Callable[[Any, Any, Dict[Any, Any]], None]
OnFailure = Callable[[Any, BaseException], None]


@dataclass
class BatchOutcome:
    """What a finished batch produced; `cancelled` batches published nothing further."""
    shape: str
    scope: Optional[CancellationScope] = None
    results: Dict[Any, Any] = field(default_factory=dict)
    failures: Dict[Any, BaseException] = field(default_factory=dict)
    skipped: bool = False
    cancelled: bool = False


class RequestOrchestrator:
    """
    Issues fan-out batches, one live scope per query shape.

    Usage:
        orchestrator = RequestOrchestrator(cache)
        outcome = await orchestrator.stream(
            "category-rows", categories, fetch_category,
            on_result=publish_row, signature=",".join(categories),
        )
    """

    def __init__(self, cache: CacheStore):
        self.cache = cache
        self._slots: Dict[str, ScopeSlot] = {}
        self._signatures: Dict[str, Hashable] = {}

    # =========================================================================
    # SCOPES & SIGNATURES
    # =========================================================================

    def slot(self, shape: str) -> ScopeSlot:
        if shape not in self._slots:
            self._slots[shape] = ScopeSlot(shape)
        return self._slots[shape]

    def open_scope(self, shape: str) -> CancellationScope:
        """Cancel the current scope for `shape` and return a fresh one."""
        return self.slot(shape).renew()

    def cancel(self, shape: str) -> None:
        if shape in self._slots:
            self._slots[shape].cancel()

    def cancel_all(self) -> None:
        for slot in self._slots.values():
            slot.cancel()

    def signature(self, shape: str) -> Optional[Hashable]:
        return self._signatures.get(shape)

    def forget(self, shape: Optional[str] = None) -> None:
        """Drop remembered signatures so the next batch always runs."""
        if shape is None:
            self._signatures.clear()
        else:
            self._signatures.pop(shape, None)

    # =========================================================================
    # CACHE-BACKED FETCH
    # =========================================================================

    async def cached(
        self,
        key: str,
        compute: Callable[[CancellationScope], Awaitable[Any]],
        scope: CancellationScope,
    ) -> Any:
        """
        Await the shared cache entry for `key` on behalf of `scope`.

        A pending entry may belong to an older, now-cancelled scope; its
        computation then rejects with QueryCancelled and is evicted. If our
        own scope is still alive we start one fresh computation under it.
        """
        for attempt in range(2):
            future = self.cache.get(key, lambda: compute(scope))
            try:
                return await asyncio.shield(future)
            except QueryCancelled:
                if scope.cancelled or attempt:
                    raise
                logger.debug(f"'{key}' was cancelled by a superseded batch, refetching")
        raise QueryCancelled(key)

    # =========================================================================
    # FAN-OUT
    # =========================================================================

    async def stream(
        self,
        shape: str,
        items: Iterable[Any],
        fetch: Fetch,
        on_result: Optional[OnResult] = None,
        on_failure: Optional[OnFailure] = None,
        signature: Optional[Hashable] = None,
    ) -> BatchOutcome:
        """
        Run `fetch(item, scope)` for every item concurrently.

        Args:
            shape: Logical query shape; one live batch per shape
            items: Work items (categories, catalogs...)
            fetch: Coroutine function producing one item's result
            on_result: Called as (item, value, results_so_far) per success
            on_failure: Called as (item, error) per non-cancel failure
            signature: Skip the batch if equal to the previous signature

        Returns:
            BatchOutcome for this batch
        """
        if signature is not None:
            if self._signatures.get(shape) == signature:
                logger.debug(f"Batch '{shape}' unchanged, skipped")
                return BatchOutcome(shape=shape, skipped=True)
            self._signatures[shape] = signature

        scope = self.open_scope(shape)
        outcome = BatchOutcome(shape=shape, scope=scope)
        # Accumulator belongs to this scope only; superseded batches are dropped
        results = outcome.results
        items = list(items)

        async def run(item: Any) -> None:
            try:
                value = await fetch(item, scope)
            except QueryCancelled:
                logger.debug(f"Batch '{shape}' item {item!r} cancelled")
                return
            except Exception as e:
                if scope.cancelled:
                    return
                logger.warning(f"Batch '{shape}' item {item!r} failed: {e}")
                outcome.failures[item] = e
                if on_failure:
                    on_failure(item, e)
                return

            if scope.cancelled:
                return
            results[item] = value
            if on_result:
                on_result(item, value, dict(results))

        logger.debug(f"Batch '{shape}' started with {len(items)} items ({scope!r})")
        await asyncio.gather(*(run(item) for item in items))

        outcome.cancelled = scope.cancelled
        if not outcome.cancelled:
            logger.info(
                f"Batch '{shape}' settled: {len(results)} ok, {len(outcome.failures)} failed"
            )
        return outcome

    async def gather_settled(
        self,
        items: Iterable[Any],
        fetch: Fetch,
        scope: CancellationScope,
        label: str = "batch",
    ) -> List[Tuple[Any, Any]]:
        """
        Run every fetch concurrently and keep the fulfilled ones.

        Results come back in submission order, for merges where order means
        priority. Raises QueryCancelled if `scope` was cancelled meanwhile,
        so a cached computation never stores a half-cancelled merge. If every
        item failed, the first failure is raised so nothing empty gets cached.
        """
        items = list(items)

        async def run(item: Any) -> Any:
            return await fetch(item, scope)

        settled = await asyncio.gather(*(run(item) for item in items), return_exceptions=True)
        scope.raise_if_cancelled()

        fulfilled = []
        failures: List[Exception] = []
        for item, result in zip(items, settled):
            if isinstance(result, QueryCancelled):
                continue
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(f"{label}: {item!r} failed: {result}")
                failures.append(result)
                continue
            fulfilled.append((item, result))

        if not fulfilled and failures:
            raise failures[0]
        return fulfilled
