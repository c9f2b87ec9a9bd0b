"""WebSocket endpoint — one live view per connection.

Learn: Each browser tab connects to /ws?token=JWT and becomes one view:

1. The token is verified before accept (close 4001 if it isn't valid).
2. The view opens a SubscriptionScope and wires up its consumers:
   personal toasts, the conversation list and, for admins, the alert bell.
3. Channels open in the background so the socket answers pings while
   subscriptions are still being confirmed.
4. A personal channel that can't be held is reported with a "degraded"
   frame listing the streams; the conversation list then polls.
5. When the client goes away, release_all(view_id) tears every handle
   down. Background work still in flight finishes, but its results are
   dropped (scope.active is False) and nothing is sent.

Client frames:
    {"type": "ping"}                          → {"type": "pong"}
    {"type": "permission", "state": "default"} → records browser permission
    {"type": "refresh"}                       → refetch conversations (+ admin counts)
"""

import asyncio
from typing import Any, Optional

import anyio
import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from servicehub.auth.dependencies import CurrentIdentity, identity_from_token
from servicehub.auth.jwt import TokenError
from servicehub.config import settings
from servicehub.events.types import MESSAGES
from servicehub.realtime.admin import AdminAggregationService
from servicehub.realtime.channels import ViewChannels
from servicehub.realtime.conversations import ConversationAggregator
from servicehub.realtime.enrichment import DELETED_USER, ProfileDirectory
from servicehub.realtime.errors import PreconditionError, SubscriptionError
from servicehub.realtime.presenter import NotificationPresenter, PermissionGate
from servicehub.realtime.registry import ChannelHandleRegistry
from servicehub.realtime.store import RecordStore
from servicehub.realtime.user_feed import UserNotificationService
from servicehub.schemas.realtime import ClientFrame, DegradedFrame

logger = structlog.get_logger()
router = APIRouter()

CLOSE_UNAUTHENTICATED = 4001
CLOSE_UNAVAILABLE = 1013


class ViewSession:
    """Everything one connected view owns, built on connect, torn down on close."""

    def __init__(
        self,
        websocket: WebSocket,
        identity: CurrentIdentity,
        registry: ChannelHandleRegistry,
        store: RecordStore,
    ):
        self.websocket = websocket
        self.identity = identity
        self.registry = registry
        self.scope = registry.open_scope()
        self._send_lock = asyncio.Lock()

        self.gate = PermissionGate(self.send)
        self.presenter = NotificationPresenter(self.send, self.gate)
        directory = ProfileDirectory(store)

        self.channels = ViewChannels(registry, self.scope, on_degraded=self._channel_degraded)
        self.feed = UserNotificationService(
            channels=self.channels,
            scope=self.scope,
            identity=identity,
            presenter=self.presenter,
            directory=directory,
        )
        self.conversations = ConversationAggregator(
            channels=self.channels,
            scope=self.scope,
            store=store,
            identity=identity,
            directory=ProfileDirectory(store, fallback=DELETED_USER),
            send=self.send,
        )
        self.admin: Optional[AdminAggregationService] = AdminAggregationService(
            registry=registry,
            scope=self.scope,
            store=store,
            identity=identity,
            presenter=self.presenter,
            directory=directory,
            send=self.send,
        )

    @property
    def view_id(self) -> str:
        return self.scope.view_id

    async def send(self, frame: dict[str, Any]) -> None:
        """Push a frame unless the view is gone."""
        if not self.scope.active:
            return
        if self.websocket.client_state != WebSocketState.CONNECTED:
            return
        async with self._send_lock:
            await self.websocket.send_json(frame)

    def _channel_degraded(self, stream: str, error: SubscriptionError) -> None:
        """A personal channel is gone: tell the browser, poll what we can."""
        if stream == MESSAGES:
            self.conversations.enter_degraded()
        frame = DegradedFrame(
            streams=self.channels.degraded_streams,
            refresh_seconds=settings.degraded_refresh_seconds,
        )
        self.scope.spawn(self.send(frame.model_dump(mode="json")))

    async def start(self) -> None:
        """Open channels, load the conversation list, activate the admin bell."""
        self.feed.register()
        self.conversations.register()
        failures = await self.channels.open()
        if failures:
            logger.warning(
                "ws.channels_degraded",
                view_id=self.view_id,
                streams=sorted({stream for stream, _ in failures}),
            )
        await self.conversations.load()

        try:
            await self.admin.activate()
        except PreconditionError:
            self.admin = None

    async def handle(self, frame: ClientFrame) -> None:
        if frame.type == "ping":
            await self.send({"type": "pong"})
        elif frame.type == "permission":
            await self.gate.update(frame.state or "")
        elif frame.type == "refresh":
            await self.conversations.load()
            if self.admin is not None:
                await self.admin.refresh()
        else:
            logger.debug("ws.unknown_frame", view_id=self.view_id, type=frame.type)

    async def close(self) -> None:
        self.conversations.dispose()
        if self.admin is not None:
            await self.admin.dispose()
        await self.registry.release_all(self.view_id)


@router.websocket("/ws")
async def view_websocket(websocket: WebSocket):
    """Live notifications for one view. Auth: ?token=JWT."""
    # ── Authentication ──────────────────────────────────────
    try:
        identity = identity_from_token(websocket.query_params.get("token"))
    except TokenError as e:
        await websocket.close(code=CLOSE_UNAUTHENTICATED, reason=str(e))
        return

    registry: Optional[ChannelHandleRegistry] = getattr(
        websocket.app.state, "registry", None
    )
    store: Optional[RecordStore] = getattr(websocket.app.state, "store", None)
    if registry is None or store is None:
        await websocket.close(code=CLOSE_UNAVAILABLE, reason="Realtime unavailable")
        return

    # ── Connection accepted ─────────────────────────────────
    await websocket.accept()
    session = ViewSession(websocket, identity, registry, store)
    log = logger.bind(view_id=session.view_id, user_id=identity.user_id)
    log.info("ws.connected", admin=identity.is_admin)

    async def client_listener():
        while True:
            data = await websocket.receive_text()
            try:
                frame = ClientFrame.model_validate_json(data)
            except ValidationError:
                log.debug("ws.bad_frame")
                continue
            await session.handle(frame)

    start_task = asyncio.create_task(session.start())
    client_task = asyncio.create_task(client_listener())

    try:
        await client_task
    except WebSocketDisconnect:
        pass
    except Exception:
        log.exception("ws.client_failed")
    finally:
        # The server may end this handler by cancelling its task group.
        # Teardown is shielded so handles are released even then.
        with anyio.CancelScope(shield=True):
            client_task.cancel()
            start_task.cancel()
            await session.close()
            (started,) = await asyncio.gather(start_task, return_exceptions=True)
            if isinstance(started, Exception):
                log.error("ws.start_failed", error=repr(started))
            log.info("ws.disconnected")
            if websocket.client_state == WebSocketState.CONNECTED:
                try:
                    await websocket.close()
                except RuntimeError as e:
                    log.debug("ws.close_skipped", error=str(e))
