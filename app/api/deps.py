"""API dependencies for dependency injection."""

import hmac
import logging
from typing import Annotated

import redis.asyncio as redis
from fastapi import Depends, Request, HTTPException, Header
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.db.session import get_db

logger = logging.getLogger(__name__)
settings = get_settings()

# Rate limiter - uses client IP address
limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit_default])


async def get_redis(request: Request) -> redis.Redis:
    """Get Redis client from app state."""
    return request.app.state.redis


# =============================================================================
# Authentication Dependencies
# =============================================================================


def _presented_key(x_api_key: str | None, authorization: str | None) -> str | None:
    """API key from ``X-API-Key`` or an ``Authorization: Bearer`` header."""
    if x_api_key:
        return x_api_key
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None


async def verify_admin_api_key(
    x_api_key: str | None = Header(None, alias="X-API-Key"),
    authorization: str | None = Header(None),
) -> bool:
    """Guard the knowledge, escalation and X admin routes.

    The Sim editor sends X-API-Key; the verification scheduler sends a
    bearer token. In development mode, authentication is skipped if no key
    is configured.
    """
    if settings.is_development and not settings.admin_api_key:
        logger.warning("Admin API auth skipped - no key configured (dev mode)")
        return True

    if not settings.admin_api_key:
        logger.error("ADMIN_API_KEY not configured")
        raise HTTPException(status_code=500, detail="API authentication not configured")

    presented = _presented_key(x_api_key, authorization)
    if not presented:
        logger.warning("Admin API request without credentials")
        raise HTTPException(status_code=401, detail="Missing API key")

    if not hmac.compare_digest(presented.encode(), settings.admin_api_key.encode()):
        logger.warning("Admin API request with invalid API key")
        raise HTTPException(status_code=401, detail="Invalid API key")

    return True


# =============================================================================
# Type Aliases
# =============================================================================

DbSession = Annotated[AsyncSession, Depends(get_db)]
RedisClient = Annotated[redis.Redis, Depends(get_redis)]
AdminAuth = Annotated[bool, Depends(verify_admin_api_key)]
