"""Test fixtures — in-memory fakes of the two store protocols.

Learn: The live layer only talks to the outside world through two seams:

1. RecordStore (query / count / insert / update), faked by FakeStore,
   a dict of tables with call recording and failure injection.
2. ChangeFeed (subscribe / unsubscribe), faked by FakeFeed. emit() routes
   an event exactly like the relay would (stream channel + per-owner
   channels), so owner filters are exercised for real.

API tests use httpx ASGITransport with dependency overrides, the same
way the rest of the backend's API tests do. No Postgres or Redis needed.
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from servicehub.auth.dependencies import CurrentIdentity
from servicehub.events.types import ALL_STREAMS
from servicehub.realtime.enrichment import ProfileDirectory
from servicehub.realtime.errors import QueryError, SubscriptionError
from servicehub.realtime.feed import FeedSubscription, channel_name
from servicehub.realtime.presenter import NotificationPresenter, PermissionGate
from servicehub.realtime.registry import ChannelHandleRegistry
from servicehub.realtime.store import Filter
from servicehub.realtime.types import ChangeEvent, Operation
from servicehub.relay.change_relay import relay_channels

USER_ID = "00000000-0000-0000-0000-000000000001"
ADMIN_ID = "00000000-0000-0000-0000-0000000000ad"
ALICE_ID = "00000000-0000-0000-0000-00000000a11c"
BOB_ID = "00000000-0000-0000-0000-000000000b0b"

NOW = datetime.now(timezone.utc).replace(microsecond=0)


def minutes_ago(n: int) -> datetime:
    return NOW - timedelta(minutes=n)


# ─── Events ──────────────────────────────────────────────


def insert(stream: str, **row) -> ChangeEvent:
    return ChangeEvent(stream, Operation.INSERT, None, row)


def update(stream: str, before: dict, after: dict) -> ChangeEvent:
    return ChangeEvent(stream, Operation.UPDATE, before, after)


def delete(stream: str, **row) -> ChangeEvent:
    return ChangeEvent(stream, Operation.DELETE, row, None)


# ─── FakeStore ───────────────────────────────────────────


class FakeStore:
    """RecordStore over plain dicts."""

    def __init__(self):
        self.tables: dict[str, list[dict[str, Any]]] = {name: [] for name in ALL_STREAMS}
        self.calls: list[tuple[str, str]] = []
        self.fail: Optional[Exception] = None

    def add(self, table: str, **row) -> dict[str, Any]:
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", NOW)
        self.tables[table].append(row)
        return row

    def _check(self, op: str, table: str) -> None:
        self.calls.append((op, table))
        if self.fail is not None:
            raise self.fail

    @staticmethod
    def _matches(row: dict[str, Any], filters) -> bool:
        for f in filters:
            value = row.get(f.column)
            if f.op == "eq" and value != f.value:
                return False
            if f.op == "gte" and (value is None or value < f.value):
                return False
            if f.op == "in" and value not in f.value:
                return False
        return True

    async def query(
        self,
        table: str,
        filters: list[Filter] = (),
        columns=None,
        order_by=None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        self._check("query", table)
        rows = [r for r in self.tables[table] if self._matches(r, filters)]
        if order_by:
            rows.sort(key=lambda r: r.get(order_by), reverse=descending)
        if columns:
            return [{c: r.get(c) for c in columns} for r in rows]
        return [dict(r) for r in rows]

    async def count(self, table: str, filters: list[Filter] = ()) -> int:
        self._check("count", table)
        return sum(1 for r in self.tables[table] if self._matches(r, filters))

    async def insert(self, table: str, values: dict[str, Any]) -> dict[str, Any]:
        self._check("insert", table)
        row = dict(values)
        if table == "messages":
            row.setdefault("is_read", False)
        return dict(self.add(table, **row))

    async def update(self, table: str, filters: list[Filter], values: dict[str, Any]) -> int:
        self._check("update", table)
        hits = [r for r in self.tables[table] if self._matches(r, filters)]
        for r in hits:
            r.update(values)
        return len(hits)


# ─── FakeFeed ────────────────────────────────────────────


class FakeFeed:
    """ChangeFeed that delivers in-process, with knobs for failure."""

    def __init__(self):
        self.subscriptions: list[FeedSubscription] = []
        self.subscribe_calls = 0
        self.unsubscribe_calls = 0
        self.failures: dict[str, int] = {}  # stream -> attempts left to refuse
        self.hang: set[str] = set()  # streams that never confirm
        self.gate: Optional[asyncio.Event] = None  # hold confirmations until set
        self.unsubscribe_failures: set[str] = set()  # streams whose unsubscribe raises

    @property
    def live(self) -> list[FeedSubscription]:
        return [s for s in self.subscriptions if not s.closed]

    def channels(self) -> list[str]:
        return sorted(s.channel for s in self.live)

    async def subscribe(self, stream, row_filter, operations, callback, on_dropped=None):
        self.subscribe_calls += 1
        if stream in self.hang:
            await asyncio.Event().wait()
        if self.gate is not None:
            await self.gate.wait()
        if self.failures.get(stream, 0) > 0:
            self.failures[stream] -= 1
            raise SubscriptionError(stream, "refused by server")
        sub = FeedSubscription(
            stream, channel_name(stream, row_filter), frozenset(operations), callback, on_dropped
        )
        self.subscriptions.append(sub)
        return sub

    async def unsubscribe(self, subscription: FeedSubscription) -> None:
        self.unsubscribe_calls += 1
        if subscription.stream in self.unsubscribe_failures:
            raise ConnectionError("unsubscribe failed")
        subscription.closed = True

    def emit(self, event: ChangeEvent) -> None:
        """Deliver ``event`` the way the relay fans it out."""
        channels = relay_channels(event)
        for sub in self.live:
            if sub.channel in channels:
                sub.deliver(event)

    def drop(self, stream: str) -> None:
        for sub in self.live:
            if sub.stream == stream and sub.on_dropped:
                sub.on_dropped(ConnectionError("connection reset"))


class FrameSink:
    """Collects frames a view would have pushed down its socket."""

    def __init__(self):
        self.frames: list[dict[str, Any]] = []

    async def __call__(self, frame: dict[str, Any]) -> None:
        self.frames.append(frame)

    def of_type(self, frame_type: str) -> list[dict[str, Any]]:
        return [f for f in self.frames if f["type"] == frame_type]


# ─── Fixtures ────────────────────────────────────────────


@pytest.fixture()
def store():
    s = FakeStore()
    s.add("profiles", id=USER_ID, full_name="Uma User", avatar_url="/u.png", created_at=NOW - timedelta(days=30))
    s.add("profiles", id=ADMIN_ID, full_name="Ada Admin", avatar_url=None, created_at=NOW - timedelta(days=90))
    s.add("profiles", id=ALICE_ID, full_name="Alice", avatar_url="/alice.png", created_at=NOW - timedelta(days=10))
    s.add("profiles", id=BOB_ID, full_name="Bob", avatar_url=None, created_at=NOW - timedelta(days=10))
    return s


@pytest.fixture()
def feed():
    return FakeFeed()


@pytest.fixture()
def registry(feed):
    return ChannelHandleRegistry(
        feed, timeout=0.05, max_attempts=3, backoff_initial=0, backoff_max=0
    )


@pytest.fixture()
def scope(registry):
    return registry.open_scope("view-1")


@pytest.fixture()
def sink():
    return FrameSink()


@pytest.fixture()
def gate(sink):
    return PermissionGate(sink)


@pytest.fixture()
def presenter(sink, gate):
    return NotificationPresenter(sink, gate, duration_ms=5000)


@pytest.fixture()
def directory(store):
    return ProfileDirectory(store)


@pytest.fixture()
def user_identity():
    return CurrentIdentity(user_id=USER_ID, roles=["client"])


@pytest.fixture()
def admin_identity():
    return CurrentIdentity(user_id=ADMIN_ID, roles=["admin"])


@pytest.fixture()
def failing_store(store):
    store.fail = QueryError("database unavailable")
    return store


# ─── HTTP clients ────────────────────────────────────────


@pytest_asyncio.fixture()
async def client(store, user_identity):
    """HTTP client with store and auth overridden (regular user)."""
    from servicehub.api.deps import get_store
    from servicehub.auth.dependencies import get_current_user
    from servicehub.main import app

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_current_user] = lambda: user_identity

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def admin_client(store, admin_identity):
    from servicehub.api.deps import get_store
    from servicehub.auth.dependencies import get_current_user
    from servicehub.main import app

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_current_user] = lambda: admin_identity

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def unauthenticated_client(store):
    """Only the store is overridden — real JWT verification runs."""
    from servicehub.api.deps import get_store
    from servicehub.main import app

    app.dependency_overrides[get_store] = lambda: store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
