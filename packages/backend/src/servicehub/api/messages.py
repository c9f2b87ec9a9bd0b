"""Messages API — conversations, threads, send, mark read.

Learn: Writes go straight to the table. Nobody here publishes anything:
the change trigger and relay turn the insert/update into feed events, and
every open view (including the sender's) refreshes from those.

Routes:
- GET  /conversations                    → my conversation list
- GET  /conversations/:user_id/messages  → thread with one user, oldest first
- POST /messages                         → send
- POST /conversations/:user_id/read      → mark their messages to me as read
"""

from fastapi import APIRouter, Depends, HTTPException

from servicehub.api.deps import get_store
from servicehub.auth.dependencies import CurrentIdentity, get_current_user
from servicehub.events.types import MESSAGES
from servicehub.realtime.conversations import (
    conversations_frame,
    fetch_conversations,
    fetch_thread,
    mark_read,
)
from servicehub.realtime.enrichment import DELETED_USER, ProfileDirectory
from servicehub.realtime.errors import QueryError
from servicehub.realtime.store import RecordStore
from servicehub.schemas.messages import MarkReadResult, MessageCreate, MessageRead
from servicehub.schemas.realtime import ConversationRead

router = APIRouter()


# ─── Conversations ───────────────────────────────────────


@router.get("/conversations", response_model=list[ConversationRead])
async def list_conversations(
    identity: CurrentIdentity = Depends(get_current_user),
    store: RecordStore = Depends(get_store),
):
    directory = ProfileDirectory(store, fallback=DELETED_USER)
    try:
        conversations = await fetch_conversations(store, directory, identity.user_id)
    except QueryError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return conversations_frame(conversations).conversations


@router.get("/conversations/{user_id}/messages", response_model=list[MessageRead])
async def get_thread(
    user_id: str,
    identity: CurrentIdentity = Depends(get_current_user),
    store: RecordStore = Depends(get_store),
):
    try:
        return await fetch_thread(store, identity.user_id, user_id)
    except QueryError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/conversations/{user_id}/read", response_model=MarkReadResult)
async def mark_conversation_read(
    user_id: str,
    identity: CurrentIdentity = Depends(get_current_user),
    store: RecordStore = Depends(get_store),
):
    try:
        updated = await mark_read(store, identity.user_id, user_id)
    except QueryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return MarkReadResult(updated=updated)


# ─── Send ────────────────────────────────────────────────


@router.post("/messages", response_model=MessageRead, status_code=201)
async def send_message(
    body: MessageCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    store: RecordStore = Depends(get_store),
):
    if body.receiver_id == identity.user_id:
        raise HTTPException(status_code=400, detail="Cannot message yourself")
    try:
        return await store.insert(MESSAGES, {
            "sender_id": identity.user_id,
            "receiver_id": body.receiver_id,
            "content": body.content,
        })
    except QueryError as e:
        raise HTTPException(status_code=400, detail=str(e))
