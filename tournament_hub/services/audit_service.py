"""
Audit log sink for administrative actions.

Entries are written in their own session so that an audit outage can never
roll back or block the action being recorded.
"""

import logging
from typing import Optional, Dict, Any, List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from tournament_hub.database import db
from tournament_hub.database.models import AuditLog, User
from tournament_hub.utils.datetime_utils import isoformat_or_none

logger = logging.getLogger(__name__)


async def record(
    actor_id: int,
    action: str,
    target_type: str,
    target_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    Append an audit entry.

    Args:
        actor_id: Real user performing the action (never the impersonated one)
        action: AuditAction value
        target_type: AuditTargetType value
        target_id: Optional id of the affected object
        details: Optional JSON-serializable context

    Returns:
        True if the entry was written, False if writing failed (already logged)
    """
    try:
        session_factory = db.get_session_factory()
        async with session_factory() as session:
            session.add(
                AuditLog(
                    actor_id=actor_id,
                    action=action,
                    target_type=target_type,
                    target_id=target_id,
                    details=details,
                )
            )
            await session.commit()
        return True
    except Exception:
        logger.error(
            f"Failed to write audit entry {action} by user {actor_id} on {target_type}:{target_id}",
            exc_info=True,
        )
        return False


async def list_entries(session: AsyncSession, limit: int = 50, skip: int = 0) -> Dict[str, Any]:
    """
    Newest-first page of audit entries with actor display names.

    Args:
        session: Database session
        limit: Page size (clamped to 1..100)
        skip: Offset

    Returns:
        {"logs": [...], "total": int}
    """
    limit = min(100, max(1, limit))
    skip = max(0, skip)

    result = await session.execute(
        select(AuditLog)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset(skip)
        .limit(limit)
    )
    logs = result.scalars().all()

    actor_ids = {log.actor_id for log in logs}
    names: Dict[int, str] = {}
    if actor_ids:
        users = await session.execute(select(User).where(User.id.in_(actor_ids)))
        for user in users.scalars().all():
            names[user.id] = user.display_name or user.name or user.email or "Unknown"

    total = await session.scalar(select(func.count()).select_from(AuditLog))

    entries: List[Dict[str, Any]] = [
        {
            "id": log.id,
            "actor_id": log.actor_id,
            "actor_name": names.get(log.actor_id, str(log.actor_id)),
            "action": log.action,
            "target_type": log.target_type,
            "target_id": log.target_id,
            "details": log.details,
            "created_at": isoformat_or_none(log.created_at),
        }
        for log in logs
    ]
    return {"logs": entries, "total": total or 0}
