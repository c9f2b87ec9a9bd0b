"""Aggregate recomputation — counts and summaries are re-derived, never patched.

Learn: When an action arrives, the view's aggregate (pending counts,
conversation list) is re-queried from the store. We never do
`count += 1` on an event payload: a missed or reordered event would make
the number drift from the truth forever. A fresh query can't drift.

Bursts are not coalesced — each action spawns its own recompute. They may
finish in any order, so every recompute takes a ticket when it starts.
A result is applied only if its ticket is newer than the last applied
one. The last query *issued* wins, and it saw the newest ground truth,
so N → N+1 → N+2 with the N+1 query finishing last still shows N+2.

Failures (store down, bad query) are logged and the displayed value stays
as it was. Results that land after the view is gone are discarded.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

import structlog

from servicehub.realtime.registry import SubscriptionScope
from servicehub.realtime.types import Action

logger = structlog.get_logger()

T = TypeVar("T")


class AggregateRecomputer(Generic[T]):
    """Keeps one view-local aggregate in step with the store."""

    def __init__(
        self,
        scope: SubscriptionScope,
        fetch: Callable[[], Awaitable[T]],
        apply: Callable[[T], Any],
        name: str = "aggregate",
    ):
        self._scope = scope
        self._fetch = fetch
        self._apply = apply
        self.name = name
        self._issued = 0
        self._applied = 0
        self.failures = 0

    @property
    def applied_ticket(self) -> int:
        return self._applied

    def on_action(self, action: Optional[Action]) -> Optional[asyncio.Task]:
        """Schedule a recompute for a mapped action (None is ignored)."""
        if action is None:
            return None
        return self.trigger()

    def trigger(self) -> Optional[asyncio.Task]:
        """Schedule a recompute in the background of the owning view."""
        if not self._scope.active:
            return None
        return self._scope.spawn(self.recompute())

    async def recompute(self) -> bool:
        """Query, then apply if still relevant. Returns True if applied."""
        self._issued += 1
        ticket = self._issued
        log = logger.bind(view_id=self._scope.view_id, aggregate=self.name, ticket=ticket)

        try:
            value = await self._fetch()
        except Exception as e:
            self.failures += 1
            log.warning("recompute.failed", error=str(e))
            return False

        if not self._scope.active:
            log.debug("recompute.discarded", reason="view_inactive")
            return False
        if ticket <= self._applied:
            log.debug("recompute.discarded", reason="stale", applied=self._applied)
            return False

        self._applied = ticket
        result = self._apply(value)
        if inspect.isawaitable(result):
            await result
        return True
