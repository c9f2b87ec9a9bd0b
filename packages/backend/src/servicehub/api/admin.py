"""Admin API — one-shot alert snapshot.

Learn: Same counts the live admin bell shows, for clients that only need
them once (dashboards, the initial render before the socket is up).
"""

from fastapi import APIRouter, Depends, HTTPException

from servicehub.api.deps import get_store
from servicehub.auth.dependencies import CurrentIdentity, require_admin
from servicehub.realtime.admin import (
    AdminState,
    alerts_frame,
    build_alerts,
    fetch_alert_counts,
)
from servicehub.realtime.errors import QueryError
from servicehub.realtime.store import RecordStore
from servicehub.schemas.realtime import AdminAlertsFrame

router = APIRouter()


@router.get("/admin/alerts", response_model=AdminAlertsFrame)
async def get_admin_alerts(
    identity: CurrentIdentity = Depends(require_admin),
    store: RecordStore = Depends(get_store),
):
    """Current pending counts and the synthetic alert list."""
    try:
        counts = await fetch_alert_counts(store)
    except QueryError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return alerts_frame(counts, build_alerts(counts), AdminState.READY)
