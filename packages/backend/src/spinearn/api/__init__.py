"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Auth is applied at the include_router level using FastAPI's
dependencies parameter. Health is open; admin routes additionally
require the admin role.
"""

from fastapi import APIRouter, Depends

from spinearn.api.admin import router as admin_router
from spinearn.api.health import router as health_router
from spinearn.api.leaderboard import router as leaderboard_router
from spinearn.api.messages import router as messages_router
from spinearn.api.withdrawals import router as withdrawals_router
from spinearn.auth.dependencies import get_current_user, require_admin

_auth = [Depends(get_current_user)]
_admin = [Depends(require_admin)]

api_router = APIRouter(prefix="/api/v1")

# Open routes — no auth required
api_router.include_router(health_router, tags=["health"])

# Protected routes — require a valid JWT
api_router.include_router(messages_router, tags=["messages"], dependencies=_auth)
api_router.include_router(leaderboard_router, tags=["leaderboard"], dependencies=_auth)
api_router.include_router(admin_router, tags=["admin"], dependencies=_admin)
api_router.include_router(withdrawals_router, tags=["withdrawals"], dependencies=_admin)
