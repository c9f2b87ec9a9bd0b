"""Channel handle registry — who holds which subscription, and for how long.

Learn: Every open view gets a SubscriptionScope. Handles acquired for the
view live in that scope, keyed by (stream, filter), so:

1. A view can never hold two live handles for the same channel
   (acquiring twice raises DuplicateSubscriptionError — it's a bug).
2. Tearing a view down is one call: release_all(view_id). Each handle is
   released best-effort; one failure never blocks the others.
3. Background work the view started (recomputes, lookups) is spawned in
   the scope. When the view goes inactive those tasks are allowed to
   finish, but their results check `scope.active` and are dropped.

acquire() does not return until the feed has confirmed the subscription.
Each attempt is bounded by a timeout, and failed attempts are retried with
exponential backoff (tenacity). If the feed later drops the channel, the
registry re-establishes it under the same policy, and calls the handle's
on_degraded hook if it gives up.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Iterable, Optional

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from servicehub.config import settings
from servicehub.realtime.errors import DuplicateSubscriptionError, SubscriptionError
from servicehub.realtime.feed import ChangeFeed, EventCallback, FeedSubscription
from servicehub.realtime.types import Operation, RowFilter

logger = structlog.get_logger()

DegradedCallback = Callable[[SubscriptionError], None]


@dataclass(eq=False)
class SubscriptionHandle:
    """Opaque handle for one (stream, filter) subscription owned by a view."""

    view_id: str
    stream: str
    row_filter: Optional[RowFilter]
    operations: frozenset[Operation]
    on_event: EventCallback
    on_degraded: Optional[DegradedCallback] = None
    released: bool = False
    subscription: Optional[FeedSubscription] = field(default=None, repr=False)

    @property
    def key(self) -> tuple[str, Optional[RowFilter]]:
        return (self.stream, self.row_filter)


class SubscriptionScope:
    """Everything one view owns: its handles and its in-flight tasks."""

    def __init__(self, view_id: str):
        self.view_id = view_id
        self.active = True
        self.handles: dict[tuple[str, Optional[RowFilter]], SubscriptionHandle] = {}
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run ``coro`` in the background on behalf of this view."""
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "scope.task_failed",
                view_id=self.view_id,
                error=repr(exc),
            )

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every spawned task (including ones they spawn) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class ChannelHandleRegistry:
    """Arena of subscription scopes, indexed by view id."""

    def __init__(
        self,
        feed: ChangeFeed,
        *,
        timeout: float = 10.0,
        max_attempts: int = 5,
        backoff_initial: float = 0.5,
        backoff_max: float = 8.0,
    ):
        self._feed = feed
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self._scopes: dict[str, SubscriptionScope] = {}

    @classmethod
    def from_settings(cls, feed: ChangeFeed) -> "ChannelHandleRegistry":
        return cls(
            feed,
            timeout=settings.subscribe_timeout_seconds,
            max_attempts=settings.subscribe_max_attempts,
            backoff_initial=settings.subscribe_backoff_initial,
            backoff_max=settings.subscribe_backoff_max,
        )

    # ─── Scopes ───────────────────────────────────────────

    def open_scope(self, view_id: Optional[str] = None) -> SubscriptionScope:
        """Start a view's lifetime. Pair with release_all(view_id)."""
        view_id = view_id or uuid.uuid4().hex
        if view_id in self._scopes:
            raise ValueError(f"View {view_id} already has an open scope")
        scope = SubscriptionScope(view_id)
        self._scopes[view_id] = scope
        return scope

    def get_scope(self, view_id: str) -> Optional[SubscriptionScope]:
        return self._scopes.get(view_id)

    def active_handles(self, view_id: Optional[str] = None) -> int:
        """Count unreleased handles — for one view, or across all views."""
        scopes: Iterable[SubscriptionScope]
        if view_id is not None:
            scope = self._scopes.get(view_id)
            scopes = [scope] if scope else []
        else:
            scopes = self._scopes.values()
        return sum(
            1 for s in scopes for h in s.handles.values() if not h.released
        )

    # ─── Acquire ──────────────────────────────────────────

    async def acquire(
        self,
        scope: SubscriptionScope,
        stream: str,
        row_filter: Optional[RowFilter],
        on_event: EventCallback,
        operations: Iterable[Operation] = (Operation.ALL,),
        on_degraded: Optional[DegradedCallback] = None,
    ) -> SubscriptionHandle:
        """Subscribe ``on_event`` to ``stream`` on behalf of ``scope``.

        Returns once the feed has confirmed the subscription.
        Raises SubscriptionError when every attempt failed or timed out.
        """
        if not scope.active:
            raise SubscriptionError(stream, "view is no longer active")

        handle = SubscriptionHandle(
            view_id=scope.view_id,
            stream=stream,
            row_filter=row_filter,
            operations=frozenset(operations),
            on_event=on_event,
            on_degraded=on_degraded,
        )
        if handle.key in scope.handles:
            raise DuplicateSubscriptionError(
                f"View {scope.view_id} already subscribed to {stream} "
                f"(filter={row_filter})"
            )
        # Reserve the slot before awaiting so a concurrent acquire can't race in
        scope.handles[handle.key] = handle

        try:
            subscription = await self._establish(handle)
        except BaseException:
            scope.handles.pop(handle.key, None)
            raise

        if handle.released or not scope.active:
            # The view was torn down while we waited for confirmation
            await self._feed.unsubscribe(subscription)
            scope.handles.pop(handle.key, None)
            raise SubscriptionError(stream, "view deactivated during acquire")

        handle.subscription = subscription
        logger.info(
            "registry.acquired",
            view_id=scope.view_id,
            stream=stream,
            channel=subscription.channel,
        )
        return handle

    async def _establish(self, handle: SubscriptionHandle) -> FeedSubscription:
        log = logger.bind(view_id=handle.view_id, stream=handle.stream)

        def _before_sleep(retry_state) -> None:
            log.warning(
                "registry.retrying",
                attempt=retry_state.attempt_number,
                error=repr(retry_state.outcome.exception()),
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.backoff_initial, max=self.backoff_max
            ),
            retry=retry_if_exception_type((SubscriptionError, asyncio.TimeoutError)),
            before_sleep=_before_sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await asyncio.wait_for(
                        self._feed.subscribe(
                            handle.stream,
                            handle.row_filter,
                            handle.operations,
                            handle.on_event,
                            on_dropped=lambda exc: self._on_dropped(handle, exc),
                        ),
                        timeout=self.timeout,
                    )
        except asyncio.TimeoutError as e:
            raise SubscriptionError(
                handle.stream, f"not confirmed within {self.timeout}s"
            ) from e
        raise SubscriptionError(handle.stream, "no attempts were made")

    # ─── Dropped channels ─────────────────────────────────

    def _on_dropped(self, handle: SubscriptionHandle, exc: Exception) -> None:
        scope = self._scopes.get(handle.view_id)
        if handle.released or scope is None or not scope.active:
            return
        scope.spawn(self._reconnect(handle))

    async def _reconnect(self, handle: SubscriptionHandle) -> None:
        old = handle.subscription
        handle.subscription = None
        if old is not None:
            try:
                await self._feed.unsubscribe(old)
            except Exception:
                logger.warning("registry.stale_close_failed", stream=handle.stream)

        try:
            subscription = await self._establish(handle)
        except SubscriptionError as e:
            logger.error(
                "registry.reconnect_failed",
                view_id=handle.view_id,
                stream=handle.stream,
                error=e.reason,
            )
            if handle.on_degraded and not handle.released:
                handle.on_degraded(e)
            return

        if handle.released:
            await self._feed.unsubscribe(subscription)
            return
        handle.subscription = subscription
        logger.info("registry.reconnected", view_id=handle.view_id, stream=handle.stream)

    # ─── Release ──────────────────────────────────────────

    async def release(self, handle: SubscriptionHandle) -> None:
        """Release one handle. Releasing twice is a no-op."""
        if handle.released:
            return
        handle.released = True

        scope = self._scopes.get(handle.view_id)
        if scope is not None and scope.handles.get(handle.key) is handle:
            del scope.handles[handle.key]

        subscription, handle.subscription = handle.subscription, None
        if subscription is not None:
            await self._feed.unsubscribe(subscription)
        logger.debug("registry.released", view_id=handle.view_id, stream=handle.stream)

    async def release_all(self, view_id: str) -> None:
        """Release every handle the view owns and end its lifetime.

        Best effort: errors are logged per handle, never raised.
        Calling it again for the same view does nothing.
        """
        scope = self._scopes.pop(view_id, None)
        if scope is None:
            return
        scope.active = False

        handles = list(scope.handles.values())
        for handle in handles:
            try:
                await self.release(handle)
            except Exception:
                logger.exception(
                    "registry.release_failed",
                    view_id=view_id,
                    stream=handle.stream,
                )
        # Handles still mid-acquire are flagged released; acquire() closes them
        for handle in list(scope.handles.values()):
            handle.released = True
        scope.handles.clear()
        logger.info("registry.view_released", view_id=view_id, handles=len(handles))
