"""
Authentication dependencies for FastAPI routes.

Every protected route depends on one of the ``require_*`` functions; they
all end in ``auth_service.authorize`` so the role and ban rules live in one
place and run before the route touches the store.
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from tournament_hub.database.db import get_db_session
from tournament_hub.database.models import UserRole
from tournament_hub.services import auth_service, user_service
from tournament_hub.services.auth_service import Principal
from tournament_hub.services.errors import ServiceError, raise_http

security = HTTPBearer(auto_error=False)


async def resolve_principal(session: AsyncSession, token: Optional[str]) -> Optional[Principal]:
    """
    Resolve a bearer token to the calling principal.

    Returns:
        Principal, or None for a missing/invalid token or a deleted user
    """
    if not token:
        return None

    payload = auth_service.verify_token(token)
    if payload is None:
        return None

    user_id = payload.get("user_id")
    if user_id is None:
        return None

    # Role and ban flag are read on every request
    user = await user_service.get_user_by_id(session, user_id)
    if user is None:
        return None

    return auth_service.build_principal(user, payload)


async def get_current_principal_optional(
    session: AsyncSession = Depends(get_db_session),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[Principal]:
    """
    Optional dependency to get the caller.
    Returns None if no token is provided or token is invalid.
    """
    if credentials is None:
        return None
    return await resolve_principal(session, credentials.credentials)


def _gate(principal: Optional[Principal], required_role: str, mutating: bool) -> Principal:
    try:
        return auth_service.authorize(principal, required_role, mutating)
    except ServiceError as e:
        raise_http(e)


async def require_player_read(
    principal: Optional[Principal] = Depends(get_current_principal_optional),
) -> Principal:
    """Any signed-in user, banned or not (read-only routes)."""
    return _gate(principal, UserRole.PLAYER.value, mutating=False)


async def require_player(
    principal: Optional[Principal] = Depends(get_current_principal_optional),
) -> Principal:
    """Any signed-in, unbanned user."""
    return _gate(principal, UserRole.PLAYER.value, mutating=True)


async def require_admin(
    principal: Optional[Principal] = Depends(get_current_principal_optional),
) -> Principal:
    """Admin or super admin (checked on the real user while impersonating)."""
    return _gate(principal, UserRole.ADMIN.value, mutating=True)


async def require_super_admin(
    principal: Optional[Principal] = Depends(get_current_principal_optional),
) -> Principal:
    """Super admin only."""
    return _gate(principal, UserRole.SUPER_ADMIN.value, mutating=True)
