"""
Public settings route handlers.

These back page rendering, so they always answer 200: on any failure the
settings service hands back safe defaults.
"""

import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from tournament_hub.database.db import get_db_session
from tournament_hub.models.schemas import (
    MaintenanceResponse,
    AnnouncementResponse,
    TickerResponse,
    SiteInfoResponse,
)
from tournament_hub.services import settings_service

logger = logging.getLogger(__name__)
router = APIRouter()

NO_STORE = "no-store, no-cache, must-revalidate"


@router.get("/api/settings/maintenance", response_model=MaintenanceResponse)
async def get_maintenance(response: Response, session: AsyncSession = Depends(get_db_session)):
    response.headers["Cache-Control"] = NO_STORE
    return {"maintenance_mode": await settings_service.get_maintenance_mode(session)}


@router.get("/api/settings/site", response_model=SiteInfoResponse)
async def get_site_info(response: Response, session: AsyncSession = Depends(get_db_session)):
    response.headers["Cache-Control"] = NO_STORE
    return {"hosted_by_names": await settings_service.get_hosted_by_names(session)}


@router.get("/api/settings/home-ticker", response_model=TickerResponse)
async def get_home_ticker(response: Response, session: AsyncSession = Depends(get_db_session)):
    response.headers["Cache-Control"] = NO_STORE
    return await settings_service.get_ticker(session)


@router.get("/api/announcement", response_model=AnnouncementResponse)
async def get_announcement(response: Response, session: AsyncSession = Depends(get_db_session)):
    response.headers["Cache-Control"] = NO_STORE
    return await settings_service.get_announcement(session)
