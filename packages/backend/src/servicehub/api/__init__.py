"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Auth is applied at the include_router level, so every protected
route rejects anonymous calls before its handler runs. The admin router
additionally checks the capability inside its own dependency (403).
"""

from fastapi import APIRouter, Depends

from servicehub.api.admin import router as admin_router
from servicehub.api.health import router as health_router
from servicehub.api.messages import router as messages_router
from servicehub.auth.dependencies import get_current_user

_auth = [Depends(get_current_user)]

api_router = APIRouter(prefix="/api/v1")

# Open
api_router.include_router(health_router, tags=["health"])

# Protected
api_router.include_router(admin_router, tags=["admin"], dependencies=_auth)
api_router.include_router(messages_router, tags=["messages"], dependencies=_auth)
