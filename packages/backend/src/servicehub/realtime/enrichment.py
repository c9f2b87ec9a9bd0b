"""Profile enrichment — resolve user ids to display names, in batches.

Learn: Toasts and conversation rows show a person's name, but events and
message rows only carry ids. Looking each id up one query at a time is an
N+1 cliff (a 50-row conversation list = 50 queries). ProfileDirectory
resolves a whole set of ids with one `profiles WHERE id IN (...)` query.

Contract: resolution never fails. Ids with no profile (deleted account)
and lookups that error out both come back as the fallback label.
"""

from dataclasses import dataclass, replace
from typing import Iterable, Optional

import structlog

from servicehub.events.types import PROFILES
from servicehub.realtime.errors import QueryError
from servicehub.realtime.store import RecordStore, in_
from servicehub.realtime.types import Action

logger = structlog.get_logger()

UNKNOWN_USER = "unknown user"
DELETED_USER = "deleted user"


@dataclass(frozen=True)
class ProfileSummary:
    id: str
    full_name: str
    avatar_url: Optional[str] = None


class ProfileDirectory:
    """Batched id → profile lookups with a fallback label."""

    def __init__(self, store: RecordStore, fallback: str = UNKNOWN_USER):
        self._store = store
        self.fallback = fallback

    async def lookup(self, ids: Iterable[Optional[str]]) -> dict[str, ProfileSummary]:
        """Profiles for ``ids`` that exist. One query per call."""
        wanted = sorted({str(i) for i in ids if i})
        if not wanted:
            return {}
        try:
            rows = await self._store.query(
                PROFILES,
                [in_("id", wanted)],
                columns=["id", "full_name", "avatar_url"],
            )
        except QueryError as e:
            logger.warning("enrichment.lookup_failed", ids=len(wanted), error=str(e))
            return {}
        return {
            str(row["id"]): ProfileSummary(
                id=str(row["id"]),
                full_name=row.get("full_name") or self.fallback,
                avatar_url=row.get("avatar_url"),
            )
            for row in rows
        }

    async def resolve(
        self, ids: Iterable[Optional[str]], fallback: Optional[str] = None
    ) -> dict[str, str]:
        """Display name for every id asked for; misses get the fallback."""
        ids = [str(i) for i in ids if i]
        found = await self.lookup(ids)
        label = fallback or self.fallback
        return {i: found[i].full_name if i in found else label for i in ids}

    async def enrich(self, action: Action) -> Action:
        """Fill ``actor_name`` on an action. Never raises."""
        if not action.actor_id:
            return action
        try:
            names = await self.resolve([action.actor_id])
        except Exception:
            logger.exception("enrichment.failed", kind=action.kind)
            names = {}
        return replace(action, actor_name=names.get(action.actor_id, self.fallback))

