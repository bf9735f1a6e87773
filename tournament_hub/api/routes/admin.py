"""Admin route handlers: tournament management, team review, settings and announcement."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from tournament_hub.api.routes import INTERNAL_ERROR_RESPONSE
from tournament_hub.api.auth_dependencies import require_admin
from tournament_hub.database.db import get_db_session
from tournament_hub.models.schemas import (
    TournamentResponse,
    TournamentCreate,
    TournamentUpdate,
    SettingsResponse,
    SettingsUpdate,
    AnnouncementResponse,
    AnnouncementUpdate,
    TeamAdminResponse,
    TeamStatusUpdate,
)
from tournament_hub.services import tournament_service, team_service, settings_service
from tournament_hub.services.auth_service import Principal
from tournament_hub.services.errors import ServiceError, raise_http, parse_id

logger = logging.getLogger(__name__)
router = APIRouter()


# ---------------------------------------------------------------------------
# Tournaments
# ---------------------------------------------------------------------------


@router.get("/api/admin/tournaments", response_model=List[TournamentResponse])
async def admin_list_tournaments(
    principal: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Every tournament, drafts included, newest first."""
    try:
        return await tournament_service.list_all_tournaments(session)
    except Exception as e:
        logger.error(f"Error listing tournaments for admin: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE


@router.post("/api/admin/tournaments", response_model=TournamentResponse, status_code=201)
async def admin_create_tournament(
    payload: TournamentCreate,
    principal: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await tournament_service.create_tournament(session, principal.user_id, payload.model_dump())
    except ServiceError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating tournament: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE


@router.get("/api/admin/tournaments/{tournament_id}", response_model=TournamentResponse)
async def admin_get_tournament(
    tournament_id: str,
    principal: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await tournament_service.get_tournament(session, parse_id(tournament_id, "tournament ID"))
    except ServiceError as e:
        raise_http(e)
    except Exception as e:
        logger.error(f"Error getting tournament {tournament_id}: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE


@router.patch("/api/admin/tournaments/{tournament_id}", response_model=TournamentResponse)
async def admin_update_tournament(
    tournament_id: str,
    payload: TournamentUpdate,
    principal: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Partial update; status can only move forward."""
    try:
        return await tournament_service.update_tournament(
            session,
            principal.user_id,
            parse_id(tournament_id, "tournament ID"),
            payload.model_dump(exclude_unset=True),
        )
    except ServiceError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating tournament {tournament_id}: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------


@router.get("/api/admin/tournaments/{tournament_id}/teams", response_model=List[TeamAdminResponse])
async def admin_list_teams(
    tournament_id: str,
    principal: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Every team of a tournament with its roster, newest first."""
    try:
        return await team_service.list_tournament_teams(session, parse_id(tournament_id, "tournament ID"))
    except ServiceError as e:
        raise_http(e)
    except Exception as e:
        logger.error(f"Error listing teams for tournament {tournament_id}: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE


@router.patch("/api/admin/teams/{team_id}", response_model=TeamAdminResponse)
async def admin_set_team_status(
    team_id: str,
    payload: TeamStatusUpdate,
    principal: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Approve or reject a team."""
    try:
        return await team_service.set_team_status(
            session, principal.user_id, parse_id(team_id, "team ID"), payload.status
        )
    except ServiceError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating team {team_id}: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE


@router.delete("/api/admin/teams/{team_id}", status_code=204)
async def admin_disband_team(
    team_id: str,
    principal: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Disband a team and give its registration slot back."""
    try:
        await team_service.disband_team(session, principal.user_id, parse_id(team_id, "team ID"))
    except ServiceError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error disbanding team {team_id}: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE


# ---------------------------------------------------------------------------
# Settings and announcement
# ---------------------------------------------------------------------------


@router.get("/api/admin/settings", response_model=SettingsResponse)
async def admin_get_settings(
    principal: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await settings_service.get_full_settings(session)
    except Exception as e:
        logger.error(f"Error getting settings: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE


@router.patch("/api/admin/settings", response_model=SettingsResponse)
async def admin_update_settings(
    payload: SettingsUpdate,
    principal: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Maintenance mode, home ticker and hosted-by names."""
    try:
        return await settings_service.update_settings(
            session,
            principal.user_id,
            maintenance_mode=payload.maintenance_mode,
            home_ticker_enabled=payload.home_ticker_enabled,
            home_ticker_items=payload.home_ticker_items,
            hosted_by_names=payload.hosted_by_names,
        )
    except ServiceError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating settings: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE


@router.patch("/api/admin/announcement", response_model=AnnouncementResponse)
async def admin_update_announcement(
    payload: AnnouncementUpdate,
    principal: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Set, edit or clear the site announcement."""
    try:
        return await settings_service.update_announcement(
            session, principal.user_id, message=payload.message, active=payload.active
        )
    except ServiceError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating announcement: {str(e)}", exc_info=True)
        raise INTERNAL_ERROR_RESPONSE
