"""View channels — one handle per (stream, filter), shared by every consumer.

Learn: A user's view has several consumers of the same channel. The inbox
toasts and the conversation list both need "messages where I'm the
receiver". Acquiring that channel twice in one view is exactly the leak
the registry forbids, so consumers don't acquire — they *route*:

    channels.route(MESSAGES, RowFilter("receiver_id", me), Audience.INBOX, feed.on_event)
    channels.route(MESSAGES, RowFilter("receiver_id", me), Audience.CONVERSATION, convos.on_event)
    await channels.open()   # one acquire per distinct (stream, filter)

The handle subscribes to the union of operations its routes care about,
and fans each event out to the routes in registration order.

A channel that fails to open (or is dropped for good) is recorded in
failures and reported to the on_degraded hook, so the view can tell the
browser and fall back to polling.
"""

from typing import Callable, Optional

import structlog

from servicehub.realtime.errors import SubscriptionError
from servicehub.realtime.mapper import relevant_operations
from servicehub.realtime.registry import (
    ChannelHandleRegistry,
    SubscriptionHandle,
    SubscriptionScope,
)
from servicehub.realtime.types import Audience, ChangeEvent, RowFilter

logger = structlog.get_logger()

Consumer = Callable[[ChangeEvent], None]
DegradedHook = Callable[[str, SubscriptionError], None]
ChannelKey = tuple[str, Optional[RowFilter]]


class ViewChannels:
    """Collects routes for one view, then opens each channel once."""

    def __init__(
        self,
        registry: ChannelHandleRegistry,
        scope: SubscriptionScope,
        on_degraded: Optional[DegradedHook] = None,
    ):
        self._registry = registry
        self._scope = scope
        self._on_degraded = on_degraded
        self._routes: dict[ChannelKey, list[tuple[Audience, Consumer]]] = {}
        self.handles: dict[ChannelKey, SubscriptionHandle] = {}
        self.failures: dict[ChannelKey, SubscriptionError] = {}

    def route(
        self,
        stream: str,
        row_filter: Optional[RowFilter],
        audience: Audience,
        consumer: Consumer,
    ) -> None:
        """Send events on (stream, filter) to ``consumer`` once opened."""
        if (stream, row_filter) in self.handles:
            raise RuntimeError(f"Channel {stream} already open; route before open()")
        self._routes.setdefault((stream, row_filter), []).append((audience, consumer))

    async def open(self) -> dict[ChannelKey, SubscriptionError]:
        """Acquire every routed channel. Returns the ones that failed."""
        for key, routes in self._routes.items():
            if key in self.handles:
                continue
            stream, row_filter = key
            operations = frozenset().union(
                *(relevant_operations(stream, audience) for audience, _ in routes)
            )
            try:
                self.handles[key] = await self._registry.acquire(
                    self._scope,
                    stream,
                    row_filter,
                    self._fanout(key),
                    operations=operations,
                    on_degraded=lambda e, key=key: self._degraded(key, e),
                )
            except SubscriptionError as e:
                self._degraded(key, e)
        return dict(self.failures)

    def _fanout(self, key: ChannelKey) -> Consumer:
        def dispatch(event: ChangeEvent) -> None:
            for _, consumer in self._routes.get(key, ()):
                try:
                    consumer(event)
                except Exception:
                    logger.exception("channels.consumer_failed", stream=key[0])

        return dispatch

    def _degraded(self, key: ChannelKey, error: SubscriptionError) -> None:
        self.failures[key] = error
        logger.warning(
            "channels.unavailable",
            view_id=self._scope.view_id,
            stream=key[0],
            error=error.reason,
        )
        if self._on_degraded is not None and self._scope.active:
            self._on_degraded(key[0], error)

    @property
    def degraded_streams(self) -> list[str]:
        return sorted({stream for stream, _ in self.failures})
