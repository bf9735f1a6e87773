"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter, constants) lives here; every sub-router
imports what it needs from this package.
"""

import os

from fastapi import APIRouter, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

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

# ---------------------------------------------------------------------------
# Shared constants
# ---------------------------------------------------------------------------
INTERNAL_ERROR_RESPONSE = HTTPException(status_code=500, detail="Internal server error")

# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from tournament_hub.api.routes.auth import router as auth_router  # noqa: E402
from tournament_hub.api.routes.tournaments import router as tournaments_router  # noqa: E402
from tournament_hub.api.routes.invites import router as invites_router  # noqa: E402
from tournament_hub.api.routes.users import router as users_router  # noqa: E402
from tournament_hub.api.routes.settings import router as settings_router  # noqa: E402
from tournament_hub.api.routes.admin import router as admin_router  # noqa: E402
from tournament_hub.api.routes.super_admin import router as super_admin_router  # noqa: E402
from tournament_hub.api.routes.ws import router as ws_router  # noqa: E402

router = APIRouter()
router.include_router(auth_router)
router.include_router(tournaments_router)
router.include_router(invites_router)
router.include_router(users_router)
router.include_router(settings_router)
router.include_router(admin_router)
router.include_router(super_admin_router)
router.include_router(ws_router)
