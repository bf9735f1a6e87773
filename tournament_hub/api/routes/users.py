"""Current-user profile and team route handlers."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tournament_hub.api.routes import INTERNAL_ERROR_RESPONSE
from tournament_hub.api.auth_dependencies import require_player, require_player_read
from tournament_hub.database.db import get_db_session
from tournament_hub.models.schemas import (
    MeResponse,
    ProfileUpdate,
    UserSearchResult,
    RosterChangeResponse,
    CaptainTransfer,
    CaptainTransferResponse,
)
from tournament_hub.services import user_service, team_service
from tournament_hub.services.auth_service import Principal
from tournament_hub.services.errors import ServiceError, raise_http, parse_id

logger = logging.getLogger(__name__)
router = APIRouter()


def _me(user: dict, principal: Principal) -> dict:
    return {
        **user,
        "impersonating": principal.is_impersonating,
        "real_user_id": principal.user_id if principal.is_impersonating else None,
    }


@router.get("/api/users/me", response_model=MeResponse)
async def get_me(
    principal: Principal = Depends(require_player_read),
    session: AsyncSession = Depends(get_db_session),
):
    """Profile of the effective user (the impersonated one while impersonating)."""
    try:
        user = await user_service.get_user_by_id(session, principal.effective_user_id)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
        return _me(user, principal)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting current user: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE


@router.patch("/api/users/me", response_model=MeResponse)
async def update_me(
    payload: ProfileUpdate,
    principal: Principal = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Update display name, Minecraft IGN and Discord username."""
    try:
        user = await user_service.update_profile(
            session,
            principal.effective_user_id,
            display_name=payload.display_name,
            minecraft_ign=payload.minecraft_ign,
            discord_username=payload.discord_username,
        )
        return _me(user, principal)
    except ServiceError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating profile: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE


@router.get("/api/users/me/teams")
async def get_my_teams(
    principal: Principal = Depends(require_player_read),
    session: AsyncSession = Depends(get_db_session),
) -> List[dict]:
    """Teams the caller captains or plays on, newest first."""
    try:
        return await team_service.get_my_teams(session, principal.effective_user_id)
    except Exception as e:
        logger.error(f"Error getting teams for user {principal.effective_user_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch teams")


@router.get("/api/users/me/teams/{team_id}")
async def get_my_team(
    team_id: str,
    principal: Principal = Depends(require_player_read),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    """Detail of one of the caller's teams; other teams read as not found."""
    try:
        return await team_service.get_team_detail(
            session, principal.effective_user_id, parse_id(team_id, "team ID")
        )
    except ServiceError as e:
        raise_http(e)
    except Exception as e:
        logger.error(f"Error getting team {team_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch team")


@router.post("/api/users/me/teams/{team_id}/leave", response_model=RosterChangeResponse)
async def leave_team(
    team_id: str,
    principal: Principal = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Leave a team while registration is open; short teams are disbanded."""
    try:
        return await team_service.leave_team(
            session, principal.effective_user_id, parse_id(team_id, "team ID")
        )
    except ServiceError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error leaving team {team_id}: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE


@router.post("/api/users/me/teams/{team_id}/transfer", response_model=CaptainTransferResponse)
async def transfer_captaincy(
    team_id: str,
    payload: CaptainTransfer,
    principal: Principal = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Captain hands the captaincy to a teammate."""
    try:
        return await team_service.transfer_captaincy(
            session,
            principal.effective_user_id,
            parse_id(team_id, "team ID"),
            payload.new_captain_user_id,
        )
    except ServiceError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error transferring captaincy of team {team_id}: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE


@router.delete("/api/users/me/teams/{team_id}/players/{player_id}", response_model=RosterChangeResponse)
async def remove_player(
    team_id: str,
    player_id: str,
    principal: Principal = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Captain removes a teammate from the roster."""
    try:
        return await team_service.remove_player(
            session,
            principal.effective_user_id,
            parse_id(team_id, "team ID"),
            parse_id(player_id, "player ID"),
        )
    except ServiceError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error removing player {player_id} from team {team_id}: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE


@router.get("/api/users/search", response_model=List[UserSearchResult])
async def search_users(
    q: str = Query(""),
    principal: Principal = Depends(require_player_read),
    session: AsyncSession = Depends(get_db_session),
):
    """Players matching a name or handle, for the invite picker."""
    try:
        return await user_service.search_users(session, principal.effective_user_id, q)
    except Exception as e:
        logger.error(f"Error searching users: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE
