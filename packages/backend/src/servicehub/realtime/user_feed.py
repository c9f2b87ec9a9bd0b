"""User notification feed — toasts for everything that concerns *me*.

Learn: Every signed-in view listens on five owner-filtered channels:

    messages          receiver_id = me   → "New message" (+ desktop alert)
    service_requests  client_id   = me   → status changes on my requests
    service_requests  worker_id   = me   → requests assigned to me + status changes
    notifications     user_id     = me   → server-generated inbox items
    documents         user_id     = me   → review outcome of my documents

The owner filter is applied by the relay's per-owner channels, not here.
This service only maps, enriches and presents.
"""

import structlog

from servicehub.events import types as ev
from servicehub.realtime.channels import ViewChannels
from servicehub.realtime.enrichment import ProfileDirectory
from servicehub.realtime.errors import PreconditionError
from servicehub.realtime.mapper import map_event
from servicehub.realtime.presenter import NotificationPresenter
from servicehub.realtime.registry import SubscriptionScope
from servicehub.realtime.types import (
    Action,
    Audience,
    ChangeEvent,
    MappingContext,
    RowFilter,
)

logger = structlog.get_logger()

USER_CHANNELS = (
    (ev.MESSAGES, "receiver_id", Audience.INBOX),
    (ev.SERVICE_REQUESTS, "client_id", Audience.CLIENT),
    (ev.SERVICE_REQUESTS, "worker_id", Audience.WORKER),
    (ev.NOTIFICATIONS, "user_id", Audience.INBOX),
    (ev.DOCUMENTS, "user_id", Audience.INBOX),
)


class UserNotificationService:
    """Personal toasts for one view."""

    def __init__(
        self,
        *,
        channels: ViewChannels,
        scope: SubscriptionScope,
        identity,
        presenter: NotificationPresenter,
        directory: ProfileDirectory,
    ):
        if identity is None or not getattr(identity, "user_id", None):
            raise PreconditionError("Authentication required")
        self._channels = channels
        self._scope = scope
        self._presenter = presenter
        self._directory = directory
        self.user_id = str(identity.user_id)
        self.presented = 0

    def register(self) -> None:
        """Route the user's channels. Call before channels.open()."""
        for stream, column, audience in USER_CHANNELS:
            context = MappingContext(user_id=self.user_id, audience=audience)
            self._channels.route(
                stream,
                RowFilter(column, self.user_id),
                audience,
                lambda event, context=context: self.on_event(event, context),
            )

    def on_event(self, event: ChangeEvent, context: MappingContext) -> None:
        action = map_event(event, context)
        if action is None:
            return
        self._scope.spawn(self._present(action))

    async def _present(self, action: Action) -> None:
        enriched = await self._directory.enrich(action)
        if not self._scope.active:
            logger.debug("user_feed.discarded", kind=action.kind)
            return
        if await self._presenter.present(enriched) is not None:
            self.presented += 1
