"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter, error mapping) lives here; every sub-router
imports what it needs from this package.
"""

import os

from fastapi import APIRouter, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from padel_league.services.errors import ServiceResult

# ---------------------------------------------------------------------------
# Shared rate limiter
# ---------------------------------------------------------------------------
IS_TEST_ENV = os.getenv("ENV", "").lower() == "test"
if IS_TEST_ENV:
    limiter = Limiter(key_func=get_remote_address)

    def no_op_limit(*args, **kwargs):
        """No-op decorator for test mode - doesn't apply any rate limiting."""
        def decorator(func):
            return func
        return decorator

    limiter.limit = lambda *args, **kwargs: no_op_limit()
else:
    limiter = Limiter(key_func=get_remote_address)

# Matchmaking is the only endpoint that scans a whole club per call
MATCHMAKING_RATE_LIMIT = "10/minute"


# ---------------------------------------------------------------------------
# Shared error mapping
# ---------------------------------------------------------------------------
def unwrap(result: ServiceResult):
    """Return the value of a successful result, or raise the matching HTTPException."""
    if result.success:
        return result.value
    raise HTTPException(status_code=result.error.http_status, detail=result.error.message)


# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from padel_league.api.routes.matches import router as matches_router  # noqa: E402
from padel_league.api.routes.teams import router as teams_router  # noqa: E402
from padel_league.api.routes.notifications import router as notifications_router  # noqa: E402
from padel_league.api.routes.admin import router as admin_router  # noqa: E402

router = APIRouter()
router.include_router(matches_router)
router.include_router(teams_router)
router.include_router(notifications_router)
router.include_router(admin_router)
