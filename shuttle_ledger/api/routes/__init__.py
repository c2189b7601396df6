"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter, error translation) lives here; every
sub-router imports what it needs from this package.
"""

import logging
import os

from fastapi import APIRouter, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from shuttle_ledger.services.ownership import (
    OrganizerScopeError,
    LocationNotFoundError,
    PaymentNotFoundError,
    PlayerNotFoundError,
    SessionNotFoundError,
)

logger = logging.getLogger(__name__)

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

BACKUP_RATE_LIMIT = os.getenv("BACKUP_RATE_LIMIT", "10/minute")

# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------
NOT_FOUND_ERRORS = (
    PlayerNotFoundError,
    SessionNotFoundError,
    PaymentNotFoundError,
    LocationNotFoundError,
)


def to_http_error(e: Exception, action: str) -> HTTPException:
    """Map a service exception onto the HTTP error returned to the client."""
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, OrganizerScopeError):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, NOT_FOUND_ERRORS):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    logger.error(f"Error {action}: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=f"Error {action}: {str(e)}")


# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from shuttle_ledger.api.routes.players import router as players_router
from shuttle_ledger.api.routes.locations import router as locations_router
from shuttle_ledger.api.routes.sessions import router as sessions_router
from shuttle_ledger.api.routes.payments import router as payments_router
from shuttle_ledger.api.routes.balances import router as balances_router
from shuttle_ledger.api.routes.settings import router as settings_router
from shuttle_ledger.api.routes.backup import router as backup_router

router = APIRouter()
router.include_router(players_router)
router.include_router(locations_router)
router.include_router(sessions_router)
router.include_router(payments_router)
router.include_router(balances_router)
router.include_router(settings_router)
router.include_router(backup_router)
