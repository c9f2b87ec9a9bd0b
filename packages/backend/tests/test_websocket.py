"""WebSocket view tests — auth, client frames, teardown.

Learn: Starlette's TestClient drives the socket synchronously. Leaving
the `with` block closes the socket and waits for the server side to
finish, so handle counts can be asserted right after.
"""

import asyncio
from types import SimpleNamespace

import anyio
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect, WebSocketState

from conftest import ADMIN_ID, ALICE_ID, USER_ID
from servicehub.auth.jwt import create_access_token
from servicehub.realtime.registry import ChannelHandleRegistry
from servicehub.realtime.websocket import view_websocket


@pytest.fixture()
def ws_client(feed, store):
    from servicehub.main import app

    registry = ChannelHandleRegistry(
        feed, timeout=1.0, max_attempts=2, backoff_initial=0, backoff_max=0
    )
    app.state.registry = registry
    app.state.store = store
    yield TestClient(app), registry
    app.state.registry = None
    app.state.store = None


def _receive_until(ws, frame_type, limit=10):
    seen = []
    for _ in range(limit):
        frame = ws.receive_json()
        seen.append(frame)
        if frame["type"] == frame_type:
            return frame, seen
    raise AssertionError(f"no {frame_type} frame in {seen}")


def test_invalid_token_closes_4001(ws_client):
    client, _ = ws_client
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws?token=not-a-jwt") as ws:
            ws.receive_json()
    assert exc.value.code == 4001


def test_missing_token_closes_4001(ws_client):
    client, _ = ws_client
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
    assert exc.value.code == 4001


def test_unavailable_feed_closes_1013(ws_client):
    client, _ = ws_client
    client.app.state.registry = None
    token = create_access_token(USER_ID)
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(f"/ws?token={token}") as ws:
            ws.receive_json()
    assert exc.value.code == 1013


def test_user_view_lifecycle(ws_client, feed, store):
    client, registry = ws_client
    store.add("messages", sender_id=ALICE_ID, receiver_id=USER_ID, content="hi", is_read=False)
    token = create_access_token(USER_ID)

    with client.websocket_connect(f"/ws?token={token}") as ws:
        convos, _ = _receive_until(ws, "conversations")
        assert convos["conversations"][0]["user_name"] == "Alice"

        ws.send_json({"type": "ping"})
        _receive_until(ws, "pong")

        ws.send_json({"type": "permission", "state": "default"})
        _receive_until(ws, "permission.request")

        assert registry.active_handles() == 6

    assert registry.active_handles() == 0
    assert feed.live == []


def test_admin_view_gets_alert_frame(ws_client, feed, store):
    client, registry = ws_client
    store.add("documents", user_id=ALICE_ID, document_type="id_card", status="pending")
    token = create_access_token(ADMIN_ID, roles=["admin"])

    with client.websocket_connect(f"/ws?token={token}") as ws:
        frame, _ = _receive_until(ws, "admin.alerts")
        assert frame["pending_documents"] == 1
        assert frame["total_alerts"] == 1

    assert registry.active_handles() == 0
    assert feed.live == []


def test_failed_channel_sends_degraded_frame(ws_client, feed):
    client, registry = ws_client
    feed.failures["messages"] = 99
    token = create_access_token(USER_ID)

    with client.websocket_connect(f"/ws?token={token}") as ws:
        seen = {}
        for _ in range(10):
            frame = ws.receive_json()
            seen.setdefault(frame["type"], frame)
            if {"degraded", "conversations"} <= seen.keys():
                break
        assert seen["degraded"]["streams"] == ["messages"]
        assert seen["degraded"]["refresh_seconds"] > 0
        # both messages channels failed; the other four are live
        assert registry.active_handles() == 4

    assert registry.active_handles() == 0
    assert feed.live == []


# ─── Cancellation ───────────────────────────────────────


class _IdleSocket:
    """Enough of a WebSocket for view_websocket; the client never speaks."""

    def __init__(self, token, registry, store):
        self.query_params = {"token": token}
        self.app = SimpleNamespace(state=SimpleNamespace(registry=registry, store=store))
        self.client_state = WebSocketState.CONNECTING
        self.frames = []

    async def accept(self):
        self.client_state = WebSocketState.CONNECTED

    async def receive_text(self):
        await anyio.sleep_forever()

    async def send_json(self, data):
        self.frames.append(data)

    async def close(self, code=1000, reason=None):
        self.client_state = WebSocketState.DISCONNECTED


@pytest.mark.asyncio
async def test_handles_released_when_task_group_cancels_handler(feed, store):
    registry = ChannelHandleRegistry(
        feed, timeout=1.0, max_attempts=1, backoff_initial=0, backoff_max=0
    )
    socket = _IdleSocket(create_access_token(USER_ID), registry, store)

    async with anyio.create_task_group() as tg:
        tg.start_soon(view_websocket, socket)
        for _ in range(100):
            if registry.active_handles() == 6:
                break
            await asyncio.sleep(0.01)
        assert registry.active_handles() == 6
        tg.cancel_scope.cancel()

    assert registry.active_handles() == 0
    assert feed.live == []
    assert socket.client_state == WebSocketState.DISCONNECTED
