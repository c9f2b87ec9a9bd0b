"""Conversation list — last message and unread count per counterparty.

Learn: The list is rebuilt from the full sent + received message sets on
every relevant change. No incremental merge: re-scanning costs a query,
but the list can never disagree with the messages table.

Names come from one batched profile lookup for all counterparties.
A counterparty without a profile (deleted account) shows "deleted user".

If a messages channel can't be held, the view calls enter_degraded() and
the list is rebuilt every degraded_refresh_seconds until dispose().
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from servicehub.config import settings
from servicehub.events.types import MESSAGES
from servicehub.realtime.channels import ViewChannels
from servicehub.realtime.enrichment import DELETED_USER, ProfileDirectory, ProfileSummary
from servicehub.realtime.errors import PreconditionError
from servicehub.realtime.mapper import map_event
from servicehub.realtime.presenter import SendFrame
from servicehub.realtime.recompute import AggregateRecomputer
from servicehub.realtime.registry import SubscriptionScope
from servicehub.realtime.store import RecordStore, eq, in_
from servicehub.realtime.types import Audience, ChangeEvent, MappingContext, RowFilter
from servicehub.schemas.realtime import ConversationRead, ConversationsFrame

logger = structlog.get_logger()

NO_MESSAGES = "No messages"
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class Conversation:
    user_id: str
    user_name: str
    user_avatar: Optional[str]
    last_message: str
    last_message_time: Optional[datetime]
    unread_count: int


def _when(value: Any) -> datetime:
    """Sort key for created_at values (driver datetimes or ISO strings)."""
    if value is None:
        return _EPOCH
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def build_conversations(
    sent: list[dict[str, Any]],
    received: list[dict[str, Any]],
    profiles: dict[str, ProfileSummary],
) -> list[Conversation]:
    """Group messages by counterparty. Pure — no I/O."""
    counterparts = {str(m["receiver_id"]) for m in sent} | {
        str(m["sender_id"]) for m in received
    }
    conversations = []
    for other in counterparts:
        thread = [m for m in sent if str(m["receiver_id"]) == other] + [
            m for m in received if str(m["sender_id"]) == other
        ]
        thread.sort(key=lambda m: _when(m.get("created_at")), reverse=True)
        last = thread[0] if thread else None
        unread = sum(
            1 for m in received if str(m["sender_id"]) == other and not m.get("is_read")
        )
        profile = profiles.get(other)
        conversations.append(Conversation(
            user_id=other,
            user_name=profile.full_name if profile else DELETED_USER,
            user_avatar=profile.avatar_url if profile else None,
            last_message=last["content"] if last else NO_MESSAGES,
            last_message_time=_when(last.get("created_at")) if last else None,
            unread_count=unread,
        ))
    conversations.sort(key=lambda c: c.last_message_time or _EPOCH, reverse=True)
    return conversations


async def fetch_conversations(
    store: RecordStore, directory: ProfileDirectory, user_id: str
) -> list[Conversation]:
    """Load both message sets and build the list (two queries + one lookup)."""
    sent = await store.query(
        MESSAGES,
        [eq("sender_id", user_id)],
        columns=["receiver_id", "content", "created_at"],
        order_by="created_at",
        descending=True,
    )
    received = await store.query(
        MESSAGES,
        [eq("receiver_id", user_id)],
        columns=["sender_id", "content", "created_at", "is_read"],
        order_by="created_at",
        descending=True,
    )
    ids = {str(m["receiver_id"]) for m in sent} | {str(m["sender_id"]) for m in received}
    profiles = await directory.lookup(ids)
    return build_conversations(sent, received, profiles)


async def fetch_thread(
    store: RecordStore, user_id: str, other_id: str
) -> list[dict[str, Any]]:
    """Every message between two users, oldest first."""
    pair = (user_id, other_id)
    rows = await store.query(
        MESSAGES,
        [in_("sender_id", pair), in_("receiver_id", pair)],
        order_by="created_at",
    )
    return [
        m for m in rows
        if {str(m["sender_id"]), str(m["receiver_id"])} == {user_id, other_id}
    ]


async def mark_read(store: RecordStore, user_id: str, other_id: str) -> int:
    """Mark everything ``other_id`` sent to ``user_id`` as read."""
    return await store.update(
        MESSAGES,
        [eq("sender_id", other_id), eq("receiver_id", user_id), eq("is_read", False)],
        {"is_read": True},
    )


def conversations_frame(conversations: list[Conversation]) -> ConversationsFrame:
    return ConversationsFrame(
        conversations=[
            ConversationRead(
                user_id=c.user_id,
                user_name=c.user_name,
                user_avatar=c.user_avatar,
                last_message=c.last_message,
                last_message_time=c.last_message_time,
                unread_count=c.unread_count,
            )
            for c in conversations
        ]
    )


class ConversationAggregator:
    """Keeps one view's conversation list in step with the messages table."""

    def __init__(
        self,
        *,
        channels: ViewChannels,
        scope: SubscriptionScope,
        store: RecordStore,
        identity,
        directory: ProfileDirectory,
        send: Optional[SendFrame] = None,
        degraded_refresh_seconds: Optional[float] = None,
    ):
        if identity is None or not getattr(identity, "user_id", None):
            raise PreconditionError("Authentication required")
        self._channels = channels
        self._scope = scope
        self._store = store
        self._directory = directory
        self._send = send
        self.user_id = str(identity.user_id)
        self.conversations: list[Conversation] = []
        self.degraded = False
        self._poll_task: Optional[asyncio.Task] = None
        self._refresh_seconds = (
            degraded_refresh_seconds
            if degraded_refresh_seconds is not None
            else settings.degraded_refresh_seconds
        )
        self._recomputer: AggregateRecomputer[list[Conversation]] = AggregateRecomputer(
            scope, self._fetch, self._apply, name="conversations"
        )

    @property
    def unread_total(self) -> int:
        return sum(c.unread_count for c in self.conversations)

    def register(self) -> None:
        """Route both sides of my messages. Call before channels.open()."""
        context = MappingContext(user_id=self.user_id, audience=Audience.CONVERSATION)
        for column in ("receiver_id", "sender_id"):
            self._channels.route(
                MESSAGES,
                RowFilter(column, self.user_id),
                Audience.CONVERSATION,
                lambda event: self.on_event(event, context),
            )

    def on_event(self, event: ChangeEvent, context: MappingContext) -> None:
        self._recomputer.on_action(map_event(event, context))

    async def load(self) -> bool:
        """Initial (or manual) rebuild."""
        return await self._recomputer.recompute()

    async def _fetch(self) -> list[Conversation]:
        return await fetch_conversations(self._store, self._directory, self.user_id)

    async def _apply(self, conversations: list[Conversation]) -> None:
        self.conversations = conversations
        if self._send is not None:
            await self._send(conversations_frame(conversations).model_dump(mode="json"))

    # ─── Degraded mode ────────────────────────────────────

    def enter_degraded(self) -> None:
        """Poll for the list instead of waiting on a channel that isn't there."""
        if self.degraded or not self._scope.active:
            return
        self.degraded = True
        logger.warning(
            "conversations.degraded",
            view_id=self._scope.view_id,
            refresh_seconds=self._refresh_seconds,
        )
        self._poll_task = self._scope.spawn(self._degraded_loop())

    async def _degraded_loop(self) -> None:
        while self._scope.active:
            await asyncio.sleep(self._refresh_seconds)
            await self.load()

    def dispose(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
