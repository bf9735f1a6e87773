"""Authentication route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tournament_hub.api.routes import limiter, INTERNAL_ERROR_RESPONSE
from tournament_hub.database.db import get_db_session
from tournament_hub.services import auth_service, user_service
from tournament_hub.services.errors import ServiceError, raise_http
from tournament_hub.models.schemas import GoogleAuthRequest, TokenResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/auth/google", response_model=TokenResponse)
@limiter.limit("10/minute")
async def google_auth(
    request: Request, payload: GoogleAuthRequest, session: AsyncSession = Depends(get_db_session)
):
    """
    Sign in with a Google ID token.

    The first sign-in creates the account as a player; later sign-ins
    refresh the email, name and picture from Google. Banned users still get a
    session, they just cannot change anything.
    """
    try:
        google_info = auth_service.verify_google_id_token(payload.id_token)
        user = await user_service.get_or_create_user(
            session,
            external_auth_id=google_info["sub"],
            email=google_info["email"],
            name=google_info.get("name") or google_info["email"].split("@")[0],
            image=google_info.get("picture"),
        )
        access_token = auth_service.issue_session_token(user["id"])
        return TokenResponse(access_token=access_token, user=user)
    except ServiceError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error during Google auth: {e}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE
