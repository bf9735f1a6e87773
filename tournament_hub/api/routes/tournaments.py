"""Public tournament and team registration route handlers."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tournament_hub.api.routes import limiter, INTERNAL_ERROR_RESPONSE
from tournament_hub.api.auth_dependencies import require_player
from tournament_hub.database.db import get_db_session
from tournament_hub.models.schemas import (
    TournamentResponse,
    TeamListResponse,
    NameAvailabilityResponse,
    TeamCreate,
)
from tournament_hub.services import tournament_service, team_service
from tournament_hub.services.auth_service import Principal
from tournament_hub.services.errors import ServiceError, raise_http, parse_id

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/tournaments", response_model=List[TournamentResponse])
async def list_tournaments(session: AsyncSession = Depends(get_db_session)):
    """
    Tournaments open to the public, soonest first.

    Scheduled tournaments whose opening time has passed are opened first.
    """
    try:
        return await tournament_service.list_public(session)
    except Exception as e:
        logger.error(f"Error listing tournaments: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch tournaments")


@router.get("/api/tournaments/{tournament_id}/teams", response_model=TeamListResponse)
async def list_tournament_teams(tournament_id: str, session: AsyncSession = Depends(get_db_session)):
    """Teams registered for a tournament, in registration order."""
    try:
        return await tournament_service.list_teams(session, parse_id(tournament_id, "tournament ID"))
    except ServiceError as e:
        raise_http(e)
    except Exception as e:
        logger.error(f"Error listing teams for tournament {tournament_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch teams")


@router.get("/api/tournaments/{tournament_id}/check-name", response_model=NameAvailabilityResponse)
async def check_team_name(
    tournament_id: str,
    name: Optional[str] = None,
    session: AsyncSession = Depends(get_db_session),
):
    """Whether a team name is still free in this tournament."""
    try:
        available = await tournament_service.check_name_available(
            session, parse_id(tournament_id, "tournament ID"), name
        )
        return {"available": available}
    except ServiceError as e:
        raise_http(e)
    except Exception as e:
        logger.error(f"Error checking team name for tournament {tournament_id}: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE


@router.post("/api/tournaments/{tournament_id}/teams", status_code=201)
@limiter.limit("20/minute")
async def register_team(
    request: Request,
    tournament_id: str,
    payload: TeamCreate,
    principal: Principal = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Register a team; the caller (or the user being impersonated) is captain."""
    try:
        return await team_service.create_team(
            session,
            parse_id(tournament_id, "tournament ID"),
            principal.effective_user_id,
            payload.team_name,
            [p.model_dump() for p in payload.players],
            payload.reward_receiver_ign,
        )
    except ServiceError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error registering team for tournament {tournament_id}: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE
