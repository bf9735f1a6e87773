"""Super-admin route handlers: users, roles, bans, impersonation, audit log."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from tournament_hub.api.routes import INTERNAL_ERROR_RESPONSE
from tournament_hub.api.auth_dependencies import require_super_admin
from tournament_hub.database.db import get_db_session
from tournament_hub.models.schemas import (
    UserResponse,
    UserRoleUpdate,
    ImpersonateRequest,
    ImpersonateExitRequest,
    TokenResponse,
    AuditLogResponse,
)
from tournament_hub.services import auth_service, user_service, audit_service
from tournament_hub.services.auth_service import Principal
from tournament_hub.services.errors import ServiceError, raise_http, parse_id

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/super-admin/users", response_model=List[UserResponse])
async def list_users(
    principal: Principal = Depends(require_super_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Every user, newest first."""
    try:
        return await user_service.list_users(session)
    except Exception as e:
        logger.error(f"Error listing users: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch users")


@router.patch("/api/super-admin/users/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    payload: UserRoleUpdate,
    principal: Principal = Depends(require_super_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Change a user's role and/or ban flag; effective on their next request."""
    try:
        return await user_service.update_user_role_or_ban(
            session,
            principal.user_id,
            parse_id(user_id, "user ID"),
            role=payload.role,
            banned=payload.banned,
        )
    except ServiceError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating user {user_id}: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE


@router.post("/api/super-admin/impersonate", response_model=TokenResponse)
async def start_impersonation(
    payload: ImpersonateRequest,
    principal: Principal = Depends(require_super_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Act as another user.

    The returned token keeps the super admin as the real user, so role checks
    and audit entries still use the super admin's identity.
    """
    try:
        target = await user_service.start_impersonation(session, principal.user_id, payload.user_id)
        token = auth_service.issue_session_token(principal.user_id, impersonating_user_id=target["id"])
        logger.info(f"User {principal.user_id} started impersonating user {target['id']}")
        return TokenResponse(access_token=token, user=target)
    except ServiceError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error starting impersonation: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE


@router.post("/api/super-admin/impersonate/exit", response_model=TokenResponse)
async def exit_impersonation(
    payload: Optional[ImpersonateExitRequest] = None,
    principal: Principal = Depends(require_super_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Stop impersonating and get a plain session token back."""
    try:
        impersonated = principal.acting_as_user_id or (payload.user_id if payload else None)
        await user_service.end_impersonation(session, principal.user_id, impersonated)
        user = await user_service.get_user_by_id(session, principal.user_id)
        token = auth_service.issue_session_token(principal.user_id)
        logger.info(f"User {principal.user_id} stopped impersonating user {impersonated}")
        return TokenResponse(access_token=token, user=user)
    except ServiceError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error ending impersonation: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE


@router.get("/api/super-admin/audit", response_model=AuditLogResponse)
async def list_audit_log(
    limit: int = 50,
    skip: int = 0,
    principal: Principal = Depends(require_super_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Newest-first page of the audit log."""
    try:
        return await audit_service.list_entries(session, limit=limit, skip=skip)
    except Exception as e:
        logger.error(f"Error listing audit log: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE
