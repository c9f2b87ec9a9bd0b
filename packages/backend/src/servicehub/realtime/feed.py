"""Change feed — Redis pub/sub subscriber side.

Learn: The relay publishes every row change twice over: once on the
stream channel and once per owner column on a narrowed channel.

Channel naming:
    servicehub:changes:{stream}                     (everything on the stream)
    servicehub:changes:{stream}:{column}={value}    (rows owned by one user)

A filtered subscription listens only on the narrowed channel, so the
owner predicate is enforced before anything crosses into the view.

Each FeedSubscription has its own PubSub connection and one listener task.
Messages on one channel arrive in publish order, and the listener hands
them to the callback one at a time — per-stream ordering is preserved.
"""

import asyncio
import json
from typing import Callable, Collection, Optional, Protocol

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from servicehub.realtime.errors import SubscriptionError
from servicehub.realtime.types import ChangeEvent, Operation, RowFilter

logger = structlog.get_logger()

CHANNEL_PREFIX = "servicehub:changes"

EventCallback = Callable[[ChangeEvent], None]
DropCallback = Callable[[Exception], None]


def channel_name(stream: str, row_filter: Optional[RowFilter] = None) -> str:
    """Redis channel for a stream, optionally narrowed to one owner."""
    base = f"{CHANNEL_PREFIX}:{stream}"
    if row_filter is None:
        return base
    return f"{base}:{row_filter.channel_suffix}"


def wants(operations: Collection[Operation], event: ChangeEvent) -> bool:
    """Does a subscription registered for ``operations`` receive ``event``?"""
    return Operation.ALL in operations or event.operation in operations


class FeedSubscription:
    """One live subscription on the change feed."""

    def __init__(
        self,
        stream: str,
        channel: str,
        operations: frozenset[Operation],
        callback: EventCallback,
        on_dropped: Optional[DropCallback] = None,
    ):
        self.stream = stream
        self.channel = channel
        self.operations = operations
        self.callback = callback
        self.on_dropped = on_dropped
        self.closed = False
        self._pubsub = None
        self._task: Optional[asyncio.Task] = None

    def deliver(self, event: ChangeEvent) -> None:
        """Hand one event to the callback if its operation is wanted."""
        if not wants(self.operations, event):
            return
        try:
            self.callback(event)
        except Exception:
            # One broken consumer must not kill the listener for later events
            logger.exception(
                "feed.callback_failed", stream=self.stream, channel=self.channel
            )


class ChangeFeed(Protocol):
    """Subscribe / unsubscribe surface of the hosted change feed."""

    async def subscribe(
        self,
        stream: str,
        row_filter: Optional[RowFilter],
        operations: frozenset[Operation],
        callback: EventCallback,
        on_dropped: Optional[DropCallback] = None,
    ) -> FeedSubscription: ...

    async def unsubscribe(self, subscription: FeedSubscription) -> None: ...


class RedisChangeFeed:
    """ChangeFeed over Redis pub/sub.

    subscribe() returns only after Redis has acknowledged the SUBSCRIBE,
    so an event published after acquire() returns is never missed.
    Timeouts are the caller's job (the registry wraps each attempt).
    """

    def __init__(self, redis: aioredis.Redis, confirm_poll_seconds: float = 1.0):
        self._redis = redis
        self._confirm_poll_seconds = confirm_poll_seconds

    async def subscribe(
        self,
        stream: str,
        row_filter: Optional[RowFilter],
        operations: frozenset[Operation],
        callback: EventCallback,
        on_dropped: Optional[DropCallback] = None,
    ) -> FeedSubscription:
        channel = channel_name(stream, row_filter)
        sub = FeedSubscription(stream, channel, operations, callback, on_dropped)
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(channel)
            await self._await_confirmation(pubsub, channel)
        except RedisError as e:
            await pubsub.aclose()
            raise SubscriptionError(stream, str(e)) from e
        except BaseException:
            # Timeout or cancellation from the caller: don't leak the connection
            await pubsub.aclose()
            raise

        sub._pubsub = pubsub
        sub._task = asyncio.create_task(self._listen(sub))
        return sub

    async def unsubscribe(self, subscription: FeedSubscription) -> None:
        if subscription.closed:
            return
        subscription.closed = True
        if subscription._task:
            subscription._task.cancel()
            try:
                await subscription._task
            except asyncio.CancelledError:
                pass
        if subscription._pubsub is not None:
            try:
                await subscription._pubsub.unsubscribe(subscription.channel)
            finally:
                await subscription._pubsub.aclose()

    async def _await_confirmation(self, pubsub, channel: str) -> None:
        while True:
            message = await pubsub.get_message(timeout=self._confirm_poll_seconds)
            if message is None:
                continue
            if message["type"] == "subscribe" and _as_text(message["channel"]) == channel:
                return

    async def _listen(self, sub: FeedSubscription) -> None:
        try:
            async for message in sub._pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    event = ChangeEvent.from_payload(json.loads(message["data"]))
                except (ValueError, KeyError) as e:
                    logger.warning(
                        "feed.bad_payload", channel=sub.channel, error=str(e)
                    )
                    continue
                sub.deliver(event)
        except asyncio.CancelledError:
            raise
        except RedisError as e:
            if sub.closed:
                return
            logger.warning("feed.dropped", channel=sub.channel, error=str(e))
            if sub.on_dropped:
                sub.on_dropped(e)


def _as_text(value) -> str:
    return value.decode() if isinstance(value, bytes) else value
