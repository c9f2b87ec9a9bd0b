"""Admin aggregation — four streams fanned into one alert feed.

Learn: The admin bell listens to documents, service_requests, profiles and
payments. Its state machine:

    LOADING ──(initial counts fetched)──▶ READY ──(dispose)──▶ DISPOSED

- Nothing happens for a non-admin identity: activate() raises
  PreconditionError before a single query or subscription, and the
  service sits in DISPOSED for the life of the view.
- Initial counts and the four subscriptions start independently; READY
  follows the counts, whichever finishes first.
- Refetch policy is FULL: any event on any of the four streams refetches
  every count, not just the affected one. Event volume is low, and one
  code path that always reflects ground truth beats a clever partial one.
- total_alerts = pending documents + pending requests. New users and
  payments are informational, never actionable backlog.
- If a subscription can't be established (or is dropped for good), the
  service goes degraded: counts keep coming from a periodic refetch.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

import structlog

from servicehub.config import settings
from servicehub.events import types as ev
from servicehub.realtime.enrichment import ProfileDirectory
from servicehub.realtime.errors import PreconditionError, SubscriptionError
from servicehub.realtime.mapper import map_event, relevant_operations
from servicehub.realtime.presenter import NotificationPresenter, SendFrame
from servicehub.realtime.recompute import AggregateRecomputer
from servicehub.realtime.registry import (
    ChannelHandleRegistry,
    SubscriptionHandle,
    SubscriptionScope,
)
from servicehub.realtime.store import RecordStore, eq, gte
from servicehub.realtime.types import (
    Action,
    Audience,
    Category,
    ChangeEvent,
    MappingContext,
)
from servicehub.schemas.realtime import AdminAlertRead, AdminAlertsFrame

logger = structlog.get_logger()

ADMIN_STREAMS = (ev.DOCUMENTS, ev.SERVICE_REQUESTS, ev.PROFILES, ev.PAYMENTS)

# Status edits on documents/requests only refresh counts; these also toast.
ADMIN_TOAST_KINDS = frozenset({
    ev.DOCUMENT_UPLOADED,
    ev.REQUEST_CREATED,
    ev.USER_REGISTERED,
    ev.PAYMENT_CREATED,
    ev.PAYMENT_COMPLETED,
})


class AdminState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    DISPOSED = "disposed"


class RefetchPolicy(str, Enum):
    FULL = "full"  # every event refetches every category


@dataclass(frozen=True)
class AlertCounts:
    pending_documents: int = 0
    pending_requests: int = 0
    new_users: int = 0
    pending_payments: int = 0

    @property
    def total_alerts(self) -> int:
        return self.pending_documents + self.pending_requests


@dataclass(frozen=True)
class AdminAlert:
    id: str
    category: Category
    title: str
    message: str
    link: Optional[str]
    created_at: datetime


async def fetch_alert_counts(
    store: RecordStore,
    *,
    now: Optional[datetime] = None,
    window_hours: Optional[int] = None,
) -> AlertCounts:
    """Count every admin category straight from the store."""
    now = now or datetime.now(timezone.utc)
    window = settings.new_user_window_hours if window_hours is None else window_hours
    since = now - timedelta(hours=window)

    docs, requests, users, payments = await asyncio.gather(
        store.count(ev.DOCUMENTS, [eq("status", "pending")]),
        store.count(ev.SERVICE_REQUESTS, [eq("status", "pending")]),
        store.count(ev.PROFILES, [gte("created_at", since)]),
        store.count(ev.PAYMENTS, [eq("status", "pending")]),
    )
    return AlertCounts(
        pending_documents=docs,
        pending_requests=requests,
        new_users=users,
        pending_payments=payments,
    )


def build_alerts(
    counts: AlertCounts,
    *,
    now: Optional[datetime] = None,
    window_hours: Optional[int] = None,
) -> list[AdminAlert]:
    """Synthetic alert list — one entry per non-empty category."""
    now = now or datetime.now(timezone.utc)
    window = settings.new_user_window_hours if window_hours is None else window_hours
    alerts = []
    if counts.pending_documents > 0:
        alerts.append(AdminAlert(
            id="pending-docs",
            category=Category.DOCUMENT,
            title="Pending documents",
            message=f"{counts.pending_documents} documents awaiting approval",
            link="/admin",
            created_at=now,
        ))
    if counts.pending_requests > 0:
        alerts.append(AdminAlert(
            id="pending-requests",
            category=Category.REQUEST,
            title="Pending requests",
            message=f"{counts.pending_requests} service requests awaiting review",
            link="/admin",
            created_at=now,
        ))
    if counts.new_users > 0:
        alerts.append(AdminAlert(
            id="new-users",
            category=Category.USER,
            title="New users",
            message=f"{counts.new_users} new users joined in the last {window} hours",
            link="/admin",
            created_at=now,
        ))
    return alerts


def alerts_frame(
    counts: AlertCounts,
    alerts: list[AdminAlert],
    state: AdminState,
    degraded: bool = False,
) -> AdminAlertsFrame:
    return AdminAlertsFrame(
        state=state.value,
        degraded=degraded,
        pending_documents=counts.pending_documents,
        pending_requests=counts.pending_requests,
        new_users=counts.new_users,
        pending_payments=counts.pending_payments,
        total_alerts=counts.total_alerts,
        alerts=[
            AdminAlertRead(
                id=a.id,
                category=a.category.value,
                title=a.title,
                message=a.message,
                link=a.link,
                created_at=a.created_at,
            )
            for a in alerts
        ],
    )


class AdminAggregationService:
    """Live admin alert counts for one view."""

    refetch_policy = RefetchPolicy.FULL

    def __init__(
        self,
        *,
        registry: ChannelHandleRegistry,
        scope: SubscriptionScope,
        store: RecordStore,
        identity,
        presenter: NotificationPresenter,
        directory: ProfileDirectory,
        send: Optional[SendFrame] = None,
        degraded_refresh_seconds: Optional[float] = None,
        window_hours: Optional[int] = None,
    ):
        self._registry = registry
        self._scope = scope
        self._store = store
        self._identity = identity
        self._presenter = presenter
        self._directory = directory
        self._send = send
        self._refresh_seconds = (
            settings.degraded_refresh_seconds
            if degraded_refresh_seconds is None
            else degraded_refresh_seconds
        )
        self._window_hours = (
            settings.new_user_window_hours if window_hours is None else window_hours
        )
        self._context = MappingContext(user_id=str(identity.user_id), audience=Audience.ADMIN)

        self.state = AdminState.LOADING
        self.degraded = False
        self.counts = AlertCounts()
        self.alerts: list[AdminAlert] = []
        self._handles: list[SubscriptionHandle] = []
        self._poll_task: Optional[asyncio.Task] = None
        self._recomputer: AggregateRecomputer[AlertCounts] = AggregateRecomputer(
            scope, self._fetch, self._apply, name="admin_counts"
        )

    @property
    def total_alerts(self) -> int:
        return self.counts.total_alerts

    # ─── Lifecycle ────────────────────────────────────────

    async def activate(self) -> None:
        """Fetch initial counts and open the four subscriptions.

        Raises PreconditionError (and stays DISPOSED) for non-admins.
        """
        if not getattr(self._identity, "is_admin", False):
            self.state = AdminState.DISPOSED
            raise PreconditionError("Admin capability required")

        log = logger.bind(view_id=self._scope.view_id)
        log.info("admin.activating")

        initial = self._scope.spawn(self._load_initial())
        await asyncio.gather(*(self._subscribe(stream) for stream in ADMIN_STREAMS))
        await initial

    async def _load_initial(self) -> None:
        await self._recomputer.recompute()
        if self.state is AdminState.LOADING and self._scope.active:
            self.state = AdminState.READY
            await self._publish()

    async def _subscribe(self, stream: str) -> None:
        try:
            handle = await self._registry.acquire(
                self._scope,
                stream,
                None,
                self._on_event,
                operations=relevant_operations(stream, Audience.ADMIN),
                on_degraded=self._enter_degraded,
            )
        except SubscriptionError as e:
            self._enter_degraded(e)
            return
        self._handles.append(handle)

    async def dispose(self) -> None:
        """Release every admin subscription. Safe to call more than once."""
        if self.state is AdminState.DISPOSED:
            return
        self.state = AdminState.DISPOSED
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        handles, self._handles = self._handles, []
        for handle in handles:
            try:
                await self._registry.release(handle)
            except Exception:
                logger.exception("admin.release_failed", stream=handle.stream)

    # ─── Events ───────────────────────────────────────────

    def _on_event(self, event: ChangeEvent) -> None:
        if self.state is AdminState.DISPOSED:
            return
        self._recomputer.trigger()

        action = map_event(event, self._context)
        if action is not None and action.kind in ADMIN_TOAST_KINDS:
            self._scope.spawn(self._present(action))

    async def _present(self, action: Action) -> None:
        enriched = await self._directory.enrich(action)
        if self._scope.active and self.state is not AdminState.DISPOSED:
            await self._presenter.present(enriched)

    # ─── Counts ───────────────────────────────────────────

    async def refresh(self) -> bool:
        """Manual refetch (the bell's refresh button, degraded polling)."""
        if self.state is AdminState.DISPOSED:
            return False
        return await self._recomputer.recompute()

    async def _fetch(self) -> AlertCounts:
        return await fetch_alert_counts(self._store, window_hours=self._window_hours)

    async def _apply(self, counts: AlertCounts) -> None:
        if self.state is AdminState.DISPOSED:
            return
        self.counts = counts
        self.alerts = build_alerts(counts, window_hours=self._window_hours)
        if self.state is AdminState.READY:
            await self._publish()

    def snapshot(self) -> AdminAlertsFrame:
        return alerts_frame(self.counts, self.alerts, self.state, self.degraded)

    async def _publish(self) -> None:
        if self._send is not None:
            await self._send(self.snapshot().model_dump(mode="json"))

    # ─── Degraded mode ────────────────────────────────────

    def _enter_degraded(self, error: SubscriptionError) -> None:
        if self.degraded or self.state is AdminState.DISPOSED or not self._scope.active:
            return
        self.degraded = True
        logger.warning(
            "admin.degraded",
            view_id=self._scope.view_id,
            stream=error.stream,
            refresh_seconds=self._refresh_seconds,
        )
        self._poll_task = self._scope.spawn(self._degraded_loop())

    async def _degraded_loop(self) -> None:
        while self._scope.active and self.state is not AdminState.DISPOSED:
            await asyncio.sleep(self._refresh_seconds)
            await self.refresh()
