"""
Tournament lifecycle store.

Status moves forward only:
    draft -> scheduled -> registration_open -> registration_closed -> ongoing -> completed

The scheduled -> registration_open step is time driven and applied lazily on
public reads; every other step is an admin action.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from tournament_hub.database.models import (
    Tournament,
    Team,
    TournamentStatus,
    TournamentType,
    TOURNAMENT_TYPE_TEAM_SIZE,
    AuditAction,
    AuditTargetType,
)
from tournament_hub.services import audit_service
from tournament_hub.services.errors import NotFound, ValidationError
from tournament_hub.services.websocket_manager import (
    notify,
    TOURNAMENTS_CHANNEL,
    TOURNAMENTS_CHANGED,
)
from tournament_hub.utils.datetime_utils import utcnow, ensure_utc, isoformat_or_none

logger = logging.getLogger(__name__)

STATUS_ORDER = [s.value for s in TournamentStatus]
PUBLIC_STATUSES = (TournamentStatus.SCHEDULED.value, TournamentStatus.REGISTRATION_OPEN.value)
TOURNAMENT_TYPES = [t.value for t in TournamentType]

# Fields an admin may change through update_tournament
EDITABLE_FIELDS = (
    "name",
    "type",
    "date",
    "start_time",
    "registration_deadline",
    "scheduled_at",
    "max_teams",
    "team_size",
    "status",
    "is_closed",
    "description",
    "prize",
    "server_ip",
)


def tournament_to_dict(tournament: Tournament, status: Optional[str] = None) -> Dict[str, Any]:
    """Serialize a tournament row, optionally overriding the status."""
    return {
        "id": tournament.id,
        "name": tournament.name,
        "type": tournament.type,
        "date": tournament.date,
        "start_time": tournament.start_time,
        "registration_deadline": tournament.registration_deadline,
        "scheduled_at": isoformat_or_none(ensure_utc(tournament.scheduled_at)),
        "max_teams": tournament.max_teams,
        "team_size": tournament.team_size,
        "registered_teams": tournament.registered_teams,
        "status": status or tournament.status,
        "is_closed": tournament.is_closed is True,
        "description": tournament.description,
        "prize": tournament.prize,
        "server_ip": tournament.server_ip,
        "created_at": isoformat_or_none(tournament.created_at),
    }


def advance_if_due(tournament: Tournament, now: datetime) -> str:
    """
    Status the tournament should have at ``now``.

    A scheduled tournament whose scheduled_at has passed is open for
    registration; everything else keeps its stored status.
    """
    scheduled_at = ensure_utc(tournament.scheduled_at)
    if (
        tournament.status == TournamentStatus.SCHEDULED.value
        and scheduled_at is not None
        and scheduled_at <= ensure_utc(now)
    ):
        return TournamentStatus.REGISTRATION_OPEN.value
    return tournament.status


async def open_due_tournaments(session: AsyncSession, now: Optional[datetime] = None) -> int:
    """
    Flip every due scheduled tournament to registration_open.

    A single guarded UPDATE, so concurrent callers are harmless: once a row
    is open the WHERE clause no longer matches it.

    Returns:
        Number of tournaments opened by this call
    """
    now = ensure_utc(now or utcnow())
    result = await session.execute(
        update(Tournament)
        .where(
            Tournament.status == TournamentStatus.SCHEDULED.value,
            Tournament.scheduled_at.is_not(None),
            Tournament.scheduled_at <= now,
        )
        .values(status=TournamentStatus.REGISTRATION_OPEN.value)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    opened = result.rowcount or 0
    if opened:
        logger.info(f"Opened registration for {opened} scheduled tournament(s)")
    return opened


async def list_public(session: AsyncSession, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """
    Tournaments players can see, sorted by date then start time.

    Draft, closed and full tournaments are left out, as is anything past
    registration.
    """
    now = ensure_utc(now or utcnow())
    await open_due_tournaments(session, now)

    result = await session.execute(
        select(Tournament)
        .where(
            Tournament.status.in_(PUBLIC_STATUSES),
            Tournament.is_closed.is_(False),
            Tournament.registered_teams < Tournament.max_teams,
        )
        .order_by(Tournament.date.asc(), Tournament.start_time.asc(), Tournament.id.asc())
    )
    return [tournament_to_dict(t, advance_if_due(t, now)) for t in result.scalars().all()]


async def _get_tournament_row(session: AsyncSession, tournament_id: int) -> Tournament:
    result = await session.execute(select(Tournament).where(Tournament.id == tournament_id))
    tournament = result.scalar_one_or_none()
    if tournament is None:
        raise NotFound("Tournament not found")
    return tournament


async def get_tournament(session: AsyncSession, tournament_id: int) -> Dict[str, Any]:
    """Get one tournament (admin view, any status)."""
    tournament = await _get_tournament_row(session, tournament_id)
    return tournament_to_dict(tournament, advance_if_due(tournament, utcnow()))


async def check_name_available(session: AsyncSession, tournament_id: int, name: Optional[str]) -> bool:
    """
    Whether ``name`` is still free among this tournament's teams.

    A blank name is reported as available; team creation rejects it anyway.

    Raises:
        NotFound: If the tournament does not exist
    """
    await _get_tournament_row(session, tournament_id)
    name = (name or "").strip()
    if not name:
        return True
    existing = await session.scalar(
        select(func.count())
        .select_from(Team)
        .where(Team.tournament_id == tournament_id, Team.team_name == name)
    )
    return not existing


async def list_teams(session: AsyncSession, tournament_id: int) -> Dict[str, Any]:
    """
    Registered teams in registration order.

    Returns:
        {"status": <tournament status>, "teams": [{id, name, created_at}]}
    """
    tournament = await _get_tournament_row(session, tournament_id)
    result = await session.execute(
        select(Team.id, Team.team_name, Team.created_at)
        .where(Team.tournament_id == tournament_id)
        .order_by(Team.created_at.asc(), Team.id.asc())
    )
    teams = [
        {"id": row.id, "name": row.team_name, "created_at": isoformat_or_none(row.created_at)}
        for row in result.all()
    ]
    return {"status": advance_if_due(tournament, utcnow()), "teams": teams}


async def list_all_tournaments(session: AsyncSession) -> List[Dict[str, Any]]:
    """Every tournament, newest first (admin table)."""
    now = utcnow()
    result = await session.execute(
        select(Tournament).order_by(Tournament.created_at.desc(), Tournament.id.desc())
    )
    return [tournament_to_dict(t, advance_if_due(t, now)) for t in result.scalars().all()]


def _validate_type_and_size(tournament_type: str, team_size: Optional[int]) -> int:
    if tournament_type not in TOURNAMENT_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(TOURNAMENT_TYPES)}")
    if team_size is None:
        return TOURNAMENT_TYPE_TEAM_SIZE[tournament_type]
    if team_size not in TOURNAMENT_TYPE_TEAM_SIZE.values():
        raise ValidationError("team_size must be 1, 2 or 4")
    return team_size


def _validate_status_change(current: str, new: str) -> None:
    if new not in STATUS_ORDER:
        raise ValidationError(f"status must be one of: {', '.join(STATUS_ORDER)}")
    if STATUS_ORDER.index(new) < STATUS_ORDER.index(current):
        raise ValidationError(f"Cannot move tournament status back from {current} to {new}")


async def create_tournament(session: AsyncSession, actor_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Create a tournament.

    Args:
        session: Database session
        actor_id: Admin creating it (recorded in the audit log)
        data: name, type, date, start_time, registration_deadline, max_teams and
            optional team_size, scheduled_at, status, description, prize, server_ip

    Raises:
        ValidationError: Missing name, bad type/size/status or max_teams < 1
    """
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Tournament name is required")
    tournament_type = data.get("type") or TournamentType.SQUAD.value
    team_size = _validate_type_and_size(tournament_type, data.get("team_size"))
    max_teams = data.get("max_teams")
    if max_teams is None or max_teams < 1:
        raise ValidationError("max_teams must be at least 1")
    status = data.get("status") or TournamentStatus.DRAFT.value
    if status not in STATUS_ORDER:
        raise ValidationError(f"status must be one of: {', '.join(STATUS_ORDER)}")

    tournament = Tournament(
        name=name,
        type=tournament_type,
        date=data["date"],
        start_time=data["start_time"],
        registration_deadline=data["registration_deadline"],
        scheduled_at=ensure_utc(data.get("scheduled_at")),
        max_teams=max_teams,
        team_size=team_size,
        registered_teams=0,
        status=status,
        is_closed=False,
        description=data.get("description"),
        prize=data.get("prize"),
        server_ip=data.get("server_ip"),
    )
    session.add(tournament)
    await session.flush()
    await session.refresh(tournament)
    await session.commit()
    logger.info(f"Tournament {tournament.id} created by user {actor_id}")

    await audit_service.record(
        actor_id,
        AuditAction.TOURNAMENT_CREATE.value,
        AuditTargetType.TOURNAMENT.value,
        target_id=str(tournament.id),
        details={"name": name, "status": status},
    )
    await notify(TOURNAMENTS_CHANNEL, TOURNAMENTS_CHANGED, {"tournament_id": tournament.id})
    return tournament_to_dict(tournament)


async def update_tournament(
    session: AsyncSession, actor_id: int, tournament_id: int, changes: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Partially update a tournament.

    Status may skip ahead but never move back. max_teams cannot drop below the
    number of teams already registered.

    Raises:
        NotFound: Tournament does not exist
        ValidationError: Nothing to change or an invalid change
    """
    changes = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS and v is not None}
    if not changes:
        raise ValidationError("No fields provided to update")

    tournament = await _get_tournament_row(session, tournament_id)
    current_status = advance_if_due(tournament, utcnow())

    if "name" in changes:
        changes["name"] = changes["name"].strip()
        if not changes["name"]:
            raise ValidationError("Tournament name is required")
    if "type" in changes or "team_size" in changes:
        tournament_type = changes.get("type", tournament.type)
        team_size = changes.get("team_size")
        if team_size is None and "type" in changes:
            team_size = TOURNAMENT_TYPE_TEAM_SIZE.get(tournament_type)
        changes["team_size"] = _validate_type_and_size(tournament_type, team_size)
    if "status" in changes:
        _validate_status_change(current_status, changes["status"])
    if "scheduled_at" in changes:
        changes["scheduled_at"] = ensure_utc(changes["scheduled_at"])

    values = dict(changes)
    stmt = update(Tournament).where(Tournament.id == tournament_id)
    if "max_teams" in values:
        if values["max_teams"] < 1:
            raise ValidationError("max_teams must be at least 1")
        # Guarded so a concurrent registration cannot slip above the new limit
        stmt = stmt.where(Tournament.registered_teams <= values["max_teams"])

    result = await session.execute(stmt.values(**values).execution_options(synchronize_session=False))
    if result.rowcount == 0:
        await session.rollback()
        raise ValidationError("max_teams cannot be lower than the number of registered teams")
    await session.refresh(tournament)
    await session.commit()
    logger.info(f"Tournament {tournament_id} updated by user {actor_id}: {sorted(values)}")

    details = {k: isoformat_or_none(v) if isinstance(v, datetime) else v for k, v in values.items()}
    await audit_service.record(
        actor_id,
        AuditAction.TOURNAMENT_UPDATE.value,
        AuditTargetType.TOURNAMENT.value,
        target_id=str(tournament_id),
        details=details,
    )
    await notify(TOURNAMENTS_CHANNEL, TOURNAMENTS_CHANGED, {"tournament_id": tournament_id})
    return tournament_to_dict(tournament, advance_if_due(tournament, utcnow()))
