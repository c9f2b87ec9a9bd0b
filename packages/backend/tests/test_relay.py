"""Change relay tests — channel fan-out and publish ordering.

Learn: Redis is an AsyncMock here. What matters is which channels each
event goes to and that events leave in the order they arrived.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import ALICE_ID, BOB_ID, USER_ID, delete, insert, update
from servicehub.db.notify import NOTIFY_CHANNEL
from servicehub.relay.change_relay import (
    ChangeRelay,
    RelayConfig,
    RelayConnectionError,
    relay_channels,
)


def test_message_insert_goes_to_stream_and_both_owners():
    event = insert("messages", id="m1", sender_id=ALICE_ID, receiver_id=USER_ID)
    assert relay_channels(event) == [
        "servicehub:changes:messages",
        f"servicehub:changes:messages:receiver_id={USER_ID}",
        f"servicehub:changes:messages:sender_id={ALICE_ID}",
    ]


def test_reassignment_reaches_old_and_new_worker():
    before = {"id": "r1", "client_id": ALICE_ID, "worker_id": BOB_ID, "status": "pending"}
    after = {**before, "worker_id": USER_ID}
    channels = relay_channels(update("service_requests", before, after))
    assert f"servicehub:changes:service_requests:worker_id={BOB_ID}" in channels
    assert f"servicehub:changes:service_requests:worker_id={USER_ID}" in channels
    # client unchanged → published once
    assert channels.count(f"servicehub:changes:service_requests:client_id={ALICE_ID}") == 1


def test_unassigned_request_skips_empty_owner():
    event = insert("service_requests", id="r2", client_id=ALICE_ID, worker_id=None)
    assert relay_channels(event) == [
        "servicehub:changes:service_requests",
        f"servicehub:changes:service_requests:client_id={ALICE_ID}",
    ]


def test_profiles_have_no_owner_channels():
    assert relay_channels(insert("profiles", id=USER_ID)) == ["servicehub:changes:profiles"]


def test_delete_uses_before_snapshot():
    event = delete("documents", id="d1", user_id=USER_ID)
    assert relay_channels(event)[-1] == f"servicehub:changes:documents:user_id={USER_ID}"


@pytest.mark.asyncio
async def test_publish_sends_same_payload_to_every_channel():
    redis = AsyncMock()
    relay = ChangeRelay(RelayConfig(), redis=redis)
    event = insert("notifications", id="n1", user_id=USER_ID, title="Hi")

    assert await relay.publish(event) == 2

    channels = [c.args[0] for c in redis.publish.await_args_list]
    payloads = {c.args[1] for c in redis.publish.await_args_list}
    assert channels == relay_channels(event)
    assert len(payloads) == 1
    assert json.loads(payloads.pop())["operation"] == "INSERT"


@pytest.mark.asyncio
async def test_publish_failure_counted_not_raised():
    redis = AsyncMock()
    redis.publish.side_effect = RedisConnectionError("down")
    relay = ChangeRelay(RelayConfig(), redis=redis)

    assert await relay.publish(insert("profiles", id="p1")) == 0
    assert relay.stats.errors == 1


@pytest.mark.asyncio
async def test_notifications_queue_in_arrival_order():
    relay = ChangeRelay(RelayConfig(), redis=AsyncMock())
    for i in range(3):
        payload = json.dumps({"stream": "profiles", "operation": "INSERT", "old": None, "new": {"id": f"p{i}"}})
        relay._on_notify(None, 1, "servicehub_changes", payload)

    queued = [relay._queue.get_nowait().after["id"] for _ in range(3)]
    assert queued == ["p0", "p1", "p2"]
    assert relay.stats.received == 3


def test_malformed_notification_is_counted():
    relay = ChangeRelay(RelayConfig(), redis=AsyncMock())
    relay._on_notify(None, 1, "servicehub_changes", "{not json")
    relay._on_notify(None, 1, "servicehub_changes", json.dumps({"stream": "profiles", "operation": "TRUNCATE"}))
    assert relay.stats.errors == 2
    assert relay.get_stats()["queued"] == 0


@pytest.mark.asyncio
async def test_publish_loop_survives_unexpected_error():
    redis = AsyncMock()
    redis.publish.side_effect = [TypeError("not serializable"), 1]
    relay = ChangeRelay(RelayConfig(), redis=redis)
    relay._queue.put_nowait(insert("profiles", id="p1"))
    relay._queue.put_nowait(insert("profiles", id="p2"))

    loop_task = asyncio.create_task(relay._publish_loop())
    await asyncio.wait_for(relay._queue.join(), timeout=1)
    loop_task.cancel()

    assert redis.publish.await_count == 2
    assert relay.stats.errors == 1
    assert relay.stats.published == 1


# ─── LISTEN connection ──────────────────────────────────


def _pg_connection():
    conn = MagicMock()
    conn.add_listener = AsyncMock()
    conn.remove_listener = AsyncMock()
    conn.close = AsyncMock()
    return conn


async def _until(predicate, timeout=1.0):
    for _ in range(int(timeout / 0.01)):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition never held")


@pytest.mark.asyncio
async def test_lost_listen_connection_is_reestablished(monkeypatch):
    first, second = _pg_connection(), _pg_connection()
    connect = AsyncMock(side_effect=[first, second])
    monkeypatch.setattr("servicehub.relay.change_relay.asyncpg.connect", connect)
    relay = ChangeRelay(RelayConfig(backoff_initial=0, backoff_max=0), redis=AsyncMock())

    task = asyncio.create_task(relay.start())
    await _until(lambda: relay._conn is first)

    (on_lost,), _ = first.add_termination_listener.call_args
    on_lost(first)
    await _until(lambda: relay._conn is second)

    await relay.stop()
    await asyncio.wait_for(task, timeout=1)

    second.add_listener.assert_awaited_with(NOTIFY_CHANNEL, relay._on_notify)
    second.close.assert_awaited_once()
    assert connect.await_count == 2
    assert relay.get_stats()["reconnects"] == 1


@pytest.mark.asyncio
async def test_relay_gives_up_after_connect_attempts(monkeypatch):
    connect = AsyncMock(side_effect=OSError("connection refused"))
    monkeypatch.setattr("servicehub.relay.change_relay.asyncpg.connect", connect)
    redis = AsyncMock()
    relay = ChangeRelay(
        RelayConfig(connect_attempts=3, backoff_initial=0, backoff_max=0), redis=redis
    )

    with pytest.raises(RelayConnectionError):
        await relay.start()

    assert connect.await_count == 3
    redis.aclose.assert_awaited_once()
