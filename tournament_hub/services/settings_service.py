"""
Site settings and announcement store.

One row (id "global") holds maintenance mode, the announcement, the home
ticker and the hosted-by names. Reads go database first, then the Redis
copy of the row, then safe defaults; public reads never raise because they
back page rendering. Admin writes lock the row, then upsert only the
columns they change.
"""

import os
import json
import logging
from typing import Optional, Dict, Any, List

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from dotenv import load_dotenv

from tournament_hub.database.models import (
    SiteSettings,
    SITE_SETTINGS_ID,
    AuditAction,
    AuditTargetType,
)
from tournament_hub.services import audit_service
from tournament_hub.services.errors import ValidationError
from tournament_hub.services.redis_service import get_redis_client
from tournament_hub.services.websocket_manager import (
    notify,
    SITE_CHANNEL,
    MAINTENANCE_CHANGED,
    ANNOUNCEMENT_CHANGED,
)
from tournament_hub.utils.datetime_utils import utcnow, isoformat_or_none

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

HOSTED_BY_DEFAULT = os.getenv("HOSTED_BY_DEFAULT", "Tournament Hub")
CACHE_TTL_SECONDS = 60  # Cache settings for 60 seconds
REDIS_KEY_PREFIX = "settings:"
CACHE_KEY = f"{REDIS_KEY_PREFIX}{SITE_SETTINGS_ID}"

TICKER_MAX_ITEMS = 20
ANNOUNCEMENT_MAX_LENGTH = 500


def default_settings() -> Dict[str, Any]:
    """Values used when there is no row and no cached copy."""
    return {
        "maintenance_mode": False,
        "announcement_message": "",
        "announcement_active": False,
        "announcement_updated_at": None,
        "announcement_updated_by": None,
        "home_ticker_enabled": False,
        "home_ticker_items": [],
        "hosted_by_names": [HOSTED_BY_DEFAULT],
    }


def _clean_list(values: Optional[List[Any]]) -> List[str]:
    """Trim entries and drop blanks."""
    if not isinstance(values, list):
        return []
    return [str(v).strip() for v in values if v is not None and str(v).strip()]


def settings_to_dict(row: SiteSettings) -> Dict[str, Any]:
    return {
        "maintenance_mode": row.maintenance_mode is True,
        "announcement_message": row.announcement_message or "",
        "announcement_active": row.announcement_active is True,
        "announcement_updated_at": isoformat_or_none(row.announcement_updated_at),
        "announcement_updated_by": row.announcement_updated_by,
        "home_ticker_enabled": row.home_ticker_enabled is True,
        "home_ticker_items": _clean_list(row.home_ticker_items),
        "hosted_by_names": _clean_list(row.hosted_by_names),
    }


async def _get_cached_settings() -> Optional[Dict[str, Any]]:
    """Get the cached settings row from Redis."""
    try:
        redis_client = await get_redis_client()
        if redis_client is None:
            return None
        value = await redis_client.get(CACHE_KEY)
        return json.loads(value) if value else None
    except Exception as e:
        logger.warning(f"Error getting cached settings from Redis: {e}")
        return None


async def _set_cached_settings(settings: Dict[str, Any]):
    """Cache the settings row in Redis with TTL."""
    try:
        redis_client = await get_redis_client()
        if redis_client is None:
            return
        await redis_client.setex(CACHE_KEY, CACHE_TTL_SECONDS, json.dumps(settings))
    except Exception as e:
        logger.warning(f"Error caching settings in Redis: {e}")


async def invalidate_settings_cache():
    """Invalidate the settings cache (call after updating settings)."""
    try:
        redis_client = await get_redis_client()
        if redis_client is None:
            return
        await redis_client.delete(CACHE_KEY)
    except Exception as e:
        logger.warning(f"Error clearing settings cache in Redis: {e}")


async def _load_row(session: AsyncSession) -> Optional[SiteSettings]:
    result = await session.execute(
        select(SiteSettings)
        .where(SiteSettings.id == SITE_SETTINGS_ID)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_site_settings(session: Optional[AsyncSession]) -> Dict[str, Any]:
    """
    Current settings, falling back from database to cache to defaults.

    Never raises.
    """
    if session is not None:
        try:
            row = await _load_row(session)
            if row is not None:
                settings = settings_to_dict(row)
                await _set_cached_settings(settings)
                return settings
        except Exception as e:
            logger.warning(f"Error reading site settings from database: {e}")
            try:
                await session.rollback()
            except Exception as rollback_error:
                logger.debug(f"Rollback after settings read failure failed: {rollback_error}")

    cached = await _get_cached_settings()
    if cached is not None:
        return {**default_settings(), **cached}

    return default_settings()


async def get_maintenance_mode(session: Optional[AsyncSession]) -> bool:
    """Whether the site is in maintenance mode (False on any failure)."""
    try:
        settings = await get_site_settings(session)
        return settings.get("maintenance_mode") is True
    except Exception as e:
        logger.warning(f"Falling back to default maintenance mode: {e}")
        return False


async def get_announcement(session: Optional[AsyncSession]) -> Dict[str, Any]:
    """
    The public announcement.

    An active announcement with a blank message reads as inactive.
    """
    try:
        settings = await get_site_settings(session)
        message = (settings.get("announcement_message") or "").strip()
        if settings.get("announcement_active") is True and message:
            return {"message": message, "active": True}
    except Exception as e:
        logger.warning(f"Falling back to default announcement: {e}")
    return {"message": "", "active": False}


async def get_ticker(session: Optional[AsyncSession]) -> Dict[str, Any]:
    """Home page ticker: {enabled, items} with blank items dropped."""
    try:
        settings = await get_site_settings(session)
        return {
            "enabled": settings.get("home_ticker_enabled") is True,
            "items": _clean_list(settings.get("home_ticker_items")),
        }
    except Exception as e:
        logger.warning(f"Falling back to default ticker: {e}")
        return {"enabled": False, "items": []}


async def get_hosted_by_names(session: Optional[AsyncSession]) -> List[str]:
    """Hosted-by display names; never empty."""
    try:
        settings = await get_site_settings(session)
        names = _clean_list(settings.get("hosted_by_names"))
        if names:
            return names
    except Exception as e:
        logger.warning(f"Falling back to default hosted-by names: {e}")
    return [HOSTED_BY_DEFAULT]


async def _upsert(session: AsyncSession, changes: Dict[str, Any]) -> None:
    """
    Write ``changes`` to the settings row, inserting it if it does not exist.

    A new row gets defaults for everything else. An existing row only has the
    changed columns overwritten, so another admin's concurrent edit of a
    different setting survives.
    """
    dialect = session.get_bind().dialect.name
    insert = pg_insert if dialect == "postgresql" else sqlite_insert
    now = utcnow()
    stmt = insert(SiteSettings).values(
        id=SITE_SETTINGS_ID, **{**default_settings(), **changes}, updated_at=now
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[SiteSettings.id],
        set_={**changes, "updated_at": now},
    )
    await session.execute(stmt)


async def _current_for_write(session: AsyncSession) -> Dict[str, Any]:
    """Current values with the row locked until the write commits (PostgreSQL)."""
    result = await session.execute(
        select(SiteSettings)
        .where(SiteSettings.id == SITE_SETTINGS_ID)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    row = result.scalar_one_or_none()
    if row is None:
        return default_settings()
    current = settings_to_dict(row)
    current["announcement_updated_at"] = row.announcement_updated_at
    return current


async def get_full_settings(session: AsyncSession) -> Dict[str, Any]:
    """Admin view of every setting; creates the default row if missing."""
    row = await _load_row(session)
    if row is None:
        defaults = default_settings()
        await _upsert(session, {})
        await session.commit()
        logger.info("Created default site settings row")
        return defaults
    return settings_to_dict(row)


async def update_settings(
    session: AsyncSession,
    actor_id: int,
    maintenance_mode: Optional[bool] = None,
    home_ticker_enabled: Optional[bool] = None,
    home_ticker_items: Optional[List[str]] = None,
    hosted_by_names: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Change site settings.

    Only the given fields are written, so repeating a call leaves the same
    state and other settings are left as they are. Each changed field gets a
    setting_change audit entry.

    Raises:
        ValidationError: Nothing to change, or too many ticker items
    """
    changes: Dict[str, Any] = {}
    if maintenance_mode is not None:
        changes["maintenance_mode"] = bool(maintenance_mode)
    if home_ticker_enabled is not None:
        changes["home_ticker_enabled"] = bool(home_ticker_enabled)
    if home_ticker_items is not None:
        items = _clean_list(home_ticker_items)
        if len(items) > TICKER_MAX_ITEMS:
            raise ValidationError(f"At most {TICKER_MAX_ITEMS} ticker items are allowed")
        changes["home_ticker_items"] = items
    if hosted_by_names is not None:
        changes["hosted_by_names"] = _clean_list(hosted_by_names) or [HOSTED_BY_DEFAULT]
    if not changes:
        raise ValidationError("No settings provided to update")

    current = await _current_for_write(session)
    await _upsert(session, changes)
    await session.commit()
    await invalidate_settings_cache()

    changed_keys = [k for k, v in changes.items() if current.get(k) != v]
    for key in changed_keys:
        await audit_service.record(
            actor_id,
            AuditAction.SETTING_CHANGE.value,
            AuditTargetType.SETTINGS.value,
            target_id=key,
            details={"from": current.get(key), "to": changes[key]},
        )
    if "maintenance_mode" in changed_keys:
        logger.info(f"Maintenance mode set to {changes['maintenance_mode']} by user {actor_id}")
        await notify(SITE_CHANNEL, MAINTENANCE_CHANGED, {"maintenance_mode": changes["maintenance_mode"]})

    return await get_full_settings(session)


async def update_announcement(
    session: AsyncSession,
    actor_id: int,
    message: Optional[str] = None,
    active: Optional[bool] = None,
) -> Dict[str, Any]:
    """
    Set, edit or clear the announcement.

    Audited as announcement_set when it goes live or its text changes while
    live, and as announcement_clear when it is switched off.

    Raises:
        ValidationError: Nothing to change, or a message that is too long
    """
    if message is None and active is None:
        raise ValidationError("Provide at least one of: message, active")
    if message is not None:
        message = message.strip()
        if len(message) > ANNOUNCEMENT_MAX_LENGTH:
            raise ValidationError(f"Announcement must be at most {ANNOUNCEMENT_MAX_LENGTH} characters")

    current = await _current_for_write(session)
    new_message = current["announcement_message"] if message is None else message
    new_active = current["announcement_active"] if active is None else bool(active)
    if new_active and not new_message:
        await session.rollback()
        raise ValidationError("An active announcement needs a message")

    await _upsert(
        session,
        {
            "announcement_message": new_message,
            "announcement_active": new_active,
            "announcement_updated_at": utcnow(),
            "announcement_updated_by": actor_id,
        },
    )
    await session.commit()
    await invalidate_settings_cache()

    was_live = current["announcement_active"] and bool(current["announcement_message"])
    action = None
    if new_active and (not was_live or new_message != current["announcement_message"]):
        action = AuditAction.ANNOUNCEMENT_SET.value
    elif not new_active and was_live:
        action = AuditAction.ANNOUNCEMENT_CLEAR.value
    if action:
        await audit_service.record(
            actor_id,
            action,
            AuditTargetType.ANNOUNCEMENT.value,
            target_id=SITE_SETTINGS_ID,
            details={"message": new_message} if new_active else None,
        )

    announcement = {"message": new_message if new_active else "", "active": new_active}
    await notify(SITE_CHANNEL, ANNOUNCEMENT_CHANGED, announcement)
    return announcement
