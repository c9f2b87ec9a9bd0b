"""Notification presenter — actions become toasts (and maybe desktop alerts).

Learn: present() is fire-and-forget from the mapper's point of view. Each
call builds one auto-dismissing toast and sends it down the view's socket.
No dedup here — the mapper's status-change rule already drops no-op
updates.

Desktop notifications go through PermissionGate:
- present() sends one only when the browser has reported "granted".
- present() never asks for permission. The gate asks once per session,
  on the first opportunity (the browser reporting "default").
"""

from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import structlog

from servicehub.config import settings
from servicehub.events import types as ev
from servicehub.realtime.enrichment import UNKNOWN_USER
from servicehub.realtime.types import Action
from servicehub.schemas.realtime import NativeNotification, PermissionRequest, Toast

logger = structlog.get_logger()

SendFrame = Callable[[dict[str, Any]], Awaitable[None]]

STATUS_LABELS = {
    "pending": "Pending",
    "accepted": "Accepted",
    "in_progress": "In progress",
    "completed": "Completed",
    "cancelled": "Cancelled",
    "approved": "Approved",
    "rejected": "Rejected",
}

# Kinds that also raise a desktop notification when allowed
DESKTOP_KINDS = frozenset({ev.MESSAGE_RECEIVED, ev.REQUEST_ASSIGNED})

LINKS = {
    ev.MESSAGE_RECEIVED: "/messages",
    ev.NOTIFICATION_CREATED: None,
    ev.REQUEST_ASSIGNED: "/service-requests",
    ev.REQUEST_STATUS_CHANGED: "/service-requests",
    ev.DOCUMENT_STATUS_CHANGED: "/profile",
    ev.REQUEST_CREATED: "/admin",
    ev.DOCUMENT_UPLOADED: "/admin",
    ev.USER_REGISTERED: "/admin",
    ev.PAYMENT_CREATED: "/admin",
    ev.PAYMENT_COMPLETED: "/admin",
}


def status_label(status: Optional[str]) -> str:
    if status is None:
        return "unknown"
    return STATUS_LABELS.get(status, status)


class PermissionState(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    DEFAULT = "default"


class PermissionGate:
    """Tracks the browser's notification permission for one session."""

    def __init__(self, send: SendFrame):
        self._send = send
        self.state: Optional[PermissionState] = None  # unknown until reported
        self.requested = False

    @property
    def granted(self) -> bool:
        return self.state is PermissionState.GRANTED

    async def update(self, state: str) -> None:
        """Record what the browser reported, then ask if that's our chance."""
        try:
            self.state = PermissionState(state)
        except ValueError:
            logger.warning("presenter.bad_permission_state", state=state)
            return
        await self.request_once()

    async def request_once(self) -> bool:
        """Send a permission request if the browser hasn't decided yet.

        At most once per session. Returns True if a request was sent.
        """
        if self.requested or self.state is not PermissionState.DEFAULT:
            return False
        self.requested = True
        await self._send(PermissionRequest().model_dump(mode="json"))
        return True


class NotificationPresenter:
    """Turns actions into toast frames for one view."""

    def __init__(
        self,
        send: SendFrame,
        permissions: PermissionGate,
        duration_ms: Optional[int] = None,
    ):
        self._send = send
        self.permissions = permissions
        self.duration_ms = settings.toast_duration_ms if duration_ms is None else duration_ms

    async def present(self, action: Action) -> Optional[Toast]:
        """Send a toast for ``action``; returns it, or None if not presentable."""
        content = self.compose(action)
        if content is None:
            return None
        title, body = content
        toast = Toast(
            kind=action.kind,
            category=action.category.value,
            title=title,
            body=body,
            link=LINKS.get(action.kind),
            duration_ms=self.duration_ms,
        )
        await self._send(toast.model_dump(mode="json"))

        if action.kind in DESKTOP_KINDS and self.permissions.granted:
            native = NativeNotification(title=title, body=self._native_body(action))
            await self._send(native.model_dump(mode="json"))
        return toast

    def compose(self, action: Action) -> Optional[tuple[str, str]]:
        """(title, body) for an action kind, or None for silent kinds."""
        r = action.record
        who = action.actor_name or UNKNOWN_USER

        if action.kind == ev.MESSAGE_RECEIVED:
            return "New message", f"From {who}: {r.get('content', '')}"
        if action.kind == ev.NOTIFICATION_CREATED:
            return r.get("title") or "Notification", r.get("message") or ""
        if action.kind == ev.REQUEST_ASSIGNED:
            return "New request", f"A new request was assigned to you: {r.get('title', '')}"
        if action.kind == ev.REQUEST_STATUS_CHANGED:
            return (
                "Request status updated",
                f"Request \"{r.get('title', '')}\" is now: {status_label(action.new_status)}",
            )
        if action.kind == ev.DOCUMENT_STATUS_CHANGED:
            return (
                "Document reviewed",
                f"Your {r.get('document_type', '')} document is now: "
                f"{status_label(action.new_status)}",
            )
        if action.kind == ev.REQUEST_CREATED:
            return "New service request", f"{who} requested: {r.get('title', '')}"
        if action.kind == ev.DOCUMENT_UPLOADED:
            return "New document", f"{who} uploaded a {r.get('document_type', '')} document"
        if action.kind == ev.USER_REGISTERED:
            account = "worker" if r.get("account_type") == "worker" else "client"
            return "New user", f"{r.get('full_name') or UNKNOWN_USER} joined as a {account}"
        if action.kind == ev.PAYMENT_CREATED:
            return "New payment", f"A payment of ${r.get('amount')} was created"
        if action.kind == ev.PAYMENT_COMPLETED:
            return "Payment completed", f"A payment of ${r.get('amount')} was received"
        return None

    def _native_body(self, action: Action) -> str:
        if action.kind == ev.MESSAGE_RECEIVED:
            return f"From {action.actor_name or UNKNOWN_USER}"
        return action.record.get("title", "")
