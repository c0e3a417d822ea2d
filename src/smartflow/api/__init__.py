"""API route aggregation.

All routers registered here get mounted in main.py.

Auth is applied at the include_router level using FastAPI's
dependencies parameter. Health is open; the notification stream is
mounted separately (main.py) because it authenticates with ?token=.
"""

from fastapi import APIRouter, Depends

from smartflow.api.health import router as health_router
from smartflow.api.notifications import router as notifications_router
from smartflow.auth.dependencies import get_current_user

# All protected routers require authentication
_auth = [Depends(get_current_user)]

api_router = APIRouter(prefix="/api/v1")

# Open routes: no auth required
api_router.include_router(health_router, tags=["health"])

# Protected routes: require a valid bearer JWT
api_router.include_router(
    notifications_router, tags=["notifications"], dependencies=_auth
)
