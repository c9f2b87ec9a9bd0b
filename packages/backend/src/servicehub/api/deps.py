"""Shared route dependencies.

Learn: Routes depend on a RecordStore, not a session, so tests can swap
in an in-memory store with app.dependency_overrides[get_store].
"""

from servicehub.db.engine import async_session_factory
from servicehub.realtime.store import RecordStore, SqlRecordStore


def get_store() -> RecordStore:
    return SqlRecordStore(async_session_factory)
