"""Pydantic schemas for frames pushed down a view's WebSocket.

Learn: Every outbound frame has a `type` discriminator the frontend
switches on. Inbound frames (ping, permission, refresh) are parsed into
ClientFrame; unknown types are ignored by the socket handler.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


# ─── Toasts + native notifications ───────────────────────


class Toast(BaseModel):
    """Transient, auto-dismissing in-app alert."""
    type: Literal["toast"] = "toast"
    kind: str
    category: str
    title: str
    body: str
    link: Optional[str] = None
    duration_ms: int = 5000


class NativeNotification(BaseModel):
    """Out-of-app desktop notification — only sent when permission is granted."""
    type: Literal["native_notification"] = "native_notification"
    title: str
    body: str
    icon: str = "/placeholder.svg"


class PermissionRequest(BaseModel):
    """Ask the browser for notification permission (sent at most once)."""
    type: Literal["permission.request"] = "permission.request"


class DegradedFrame(BaseModel):
    """Some streams have no live channel; their data now refreshes by polling."""
    type: Literal["degraded"] = "degraded"
    streams: list[str]
    refresh_seconds: float


# ─── Admin alert feed ────────────────────────────────────


class AdminAlertRead(BaseModel):
    id: str
    category: str
    title: str
    message: str
    link: Optional[str] = None
    created_at: datetime


class AdminAlertsFrame(BaseModel):
    type: Literal["admin.alerts"] = "admin.alerts"
    state: str
    degraded: bool = False
    pending_documents: int
    pending_requests: int
    new_users: int
    pending_payments: int
    total_alerts: int
    alerts: list[AdminAlertRead] = Field(default_factory=list)


# ─── Conversations ───────────────────────────────────────


class ConversationRead(BaseModel):
    user_id: str
    user_name: str
    user_avatar: Optional[str] = None
    last_message: str
    last_message_time: Optional[datetime] = None
    unread_count: int


class ConversationsFrame(BaseModel):
    type: Literal["conversations"] = "conversations"
    conversations: list[ConversationRead]


# ─── Inbound ─────────────────────────────────────────────


class ClientFrame(BaseModel):
    """Frame sent by the browser: ping, permission, or refresh."""
    type: str
    state: Optional[str] = None
