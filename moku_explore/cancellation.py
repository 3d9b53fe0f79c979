"""
Cancellation scopes for fan-out batches.

A scope is a cooperative token: cancelling it never interrupts running code,
it only flips a liveness flag (and wakes transports waiting on it). Every
state mutation made on behalf of a scope checks `alive` first.

Usage:
    slot = ScopeSlot("category-rows")
    scope = slot.renew()          # cancels whatever scope was current
    await client.execute(q, token=scope)
    if scope.alive:
        publish(...)
"""

import asyncio
import itertools
import logging
from typing import Optional

from sources.client import QueryCancelled

logger = logging.getLogger(__name__)

_scope_ids = itertools.count(1)


class ScopeCancelled(QueryCancelled):
    """Raised by CancellationScope.raise_if_cancelled()."""


class CancellationScope:
    """One unit of work whose publication can be invalidated wholesale."""

    def __init__(self, name: str = "scope"):
        self.name = name
        self.id = next(_scope_ids)
        self._cancelled = False
        self._event: Optional[asyncio.Event] = None

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "alive"
        return f"<CancellationScope {self.name}#{self.id} {state}>"

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def alive(self) -> bool:
        return not self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._event is not None:
            self._event.set()
        logger.debug(f"Cancelled {self!r}")

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise ScopeCancelled(self.name)

    async def wait(self) -> None:
        """Return once the scope is cancelled."""
        if self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()


class ScopeSlot:
    """
    Holds the single current scope for one logical query shape.

    renew() cancels the previous scope before handing out the next one, so at
    most one batch per slot can ever publish.
    """

    def __init__(self, name: str):
        self.name = name
        self._current: Optional[CancellationScope] = None

    @property
    def current(self) -> Optional[CancellationScope]:
        return self._current

    def renew(self) -> CancellationScope:
        if self._current is not None:
            self._current.cancel()
        self._current = CancellationScope(self.name)
        return self._current

    def cancel(self) -> None:
        if self._current is not None:
            self._current.cancel()
