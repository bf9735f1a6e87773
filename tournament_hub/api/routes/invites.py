"""Team invite route handlers."""

import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tournament_hub.api.routes import INTERNAL_ERROR_RESPONSE
from tournament_hub.api.auth_dependencies import require_player, require_player_read
from tournament_hub.database.db import get_db_session
from tournament_hub.models.schemas import InviteCreate, InviteRespond, InviteResponse
from tournament_hub.services import invite_service
from tournament_hub.services.auth_service import Principal
from tournament_hub.services.errors import ServiceError, raise_http, parse_id

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/invites", response_model=InviteResponse, status_code=201)
async def create_invite(
    payload: InviteCreate,
    principal: Principal = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Invite a user to a team the caller captains or is forming."""
    try:
        return await invite_service.invite_to_team(
            session,
            principal.effective_user_id,
            payload.tournament_id,
            payload.team_name,
            payload.to_user_id,
        )
    except ServiceError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating invite: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE


@router.get("/api/invites", response_model=List[InviteResponse])
async def list_invites(
    invite_type: Literal["received", "sent"] = Query("received", alias="type"),
    tournament_id: Optional[int] = None,
    team_name: Optional[str] = None,
    principal: Principal = Depends(require_player_read),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Pending invites addressed to the caller (type=received) or invites the
    caller sent as captain (type=sent, optionally for one team).
    """
    try:
        if invite_type == "sent":
            return await invite_service.list_sent_invites(
                session, principal.effective_user_id, tournament_id, team_name
            )
        return await invite_service.list_received_invites(session, principal.effective_user_id)
    except Exception as e:
        logger.error(f"Error listing invites: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE


@router.patch("/api/invites/{invite_id}", response_model=InviteResponse)
async def respond_to_invite(
    invite_id: str,
    payload: InviteRespond,
    principal: Principal = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Accept or reject an invite."""
    try:
        return await invite_service.respond_to_invite(
            session,
            principal.effective_user_id,
            parse_id(invite_id, "invite ID"),
            payload.action == "accept",
        )
    except ServiceError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error responding to invite {invite_id}: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE
