"""
Team formation: registration against a tournament's capacity, roster
changes while registration is open, admin review, and the captain/member
views of a user's teams.

Every change to a counter (registered_teams, player_count) is a single
guarded UPDATE, so concurrent requests cannot push one past its limit.
"""

import logging
from typing import Optional, Dict, Any, List, Iterable

from sqlalchemy import select, update, delete, or_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tournament_hub.database.db import is_unique_violation
from tournament_hub.database.models import (
    Tournament,
    Team,
    TeamPlayer,
    TeamInvite,
    TeamStatus,
    TournamentStatus,
    User,
    AuditAction,
    AuditTargetType,
)
from tournament_hub.services import audit_service, tournament_service
from tournament_hub.services.errors import (
    NotFound,
    Forbidden,
    ValidationError,
    Conflict,
    CapacityExceeded,
)
from tournament_hub.services.websocket_manager import (
    notify,
    tournament_channel,
    TEAMS_CHANGED,
    TOURNAMENTS_CHANNEL,
    TOURNAMENTS_CHANGED,
)
from tournament_hub.utils.datetime_utils import isoformat_or_none

logger = logging.getLogger(__name__)

TEAM_NAME_MAX_LENGTH = 50
REVIEW_STATUSES = (TeamStatus.APPROVED.value, TeamStatus.REJECTED.value)

# (constraint name, table, columns) for telling unique violations apart
TEAM_NAME_CONSTRAINT = ("uq_teams_tournament_name", "teams", ("tournament_id", "team_name"))
ROSTER_CONSTRAINT = ("uq_team_players_tournament_user", "team_players", ("tournament_id", "user_id"))


def _normalize_players(players: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Trim handles and drop roster rows with neither a user nor an IGN."""
    normalized = []
    for player in players:
        user_id = player.get("user_id")
        ign = (player.get("minecraft_ign") or "").strip()
        discord = (player.get("discord_username") or "").strip()
        if user_id is None and not ign:
            continue
        normalized.append({"user_id": user_id, "minecraft_ign": ign, "discord_username": discord})
    return normalized


def _player_key(player: Dict[str, Any]) -> tuple:
    return (player["minecraft_ign"].lower(), player["discord_username"].lower())


def validate_roster(
    team_name: str,
    players: List[Dict[str, Any]],
    team_size: int,
    reward_receiver_ign: Optional[str] = None,
) -> None:
    """
    Input checks that need no store access.

    Raises:
        ValidationError: Blank/oversized name, too many players, duplicate
            users or handles, or a reward receiver outside the roster
    """
    if not team_name:
        raise ValidationError("Team name is required")
    if len(team_name) > TEAM_NAME_MAX_LENGTH:
        raise ValidationError(f"Team name must be at most {TEAM_NAME_MAX_LENGTH} characters")
    if len(players) > team_size:
        raise ValidationError(f"Too many players: this tournament allows {team_size} per team")

    user_ids = [p["user_id"] for p in players if p["user_id"] is not None]
    if len(user_ids) != len(set(user_ids)):
        raise ValidationError("Duplicate players in team")

    keys = [_player_key(p) for p in players if p["minecraft_ign"]]
    if len(keys) != len(set(keys)):
        raise ValidationError("Duplicate players in team")

    if reward_receiver_ign:
        igns = {p["minecraft_ign"].lower() for p in players if p["minecraft_ign"]}
        if reward_receiver_ign.strip().lower() not in igns:
            raise ValidationError("Reward receiver must be one of the team's players")


async def user_team_in_tournament(session: AsyncSession, tournament_id: int, user_id: int) -> Optional[int]:
    """Id of the team the user captains or plays on in this tournament, if any."""
    result = await session.execute(
        select(Team.id)
        .outerjoin(TeamPlayer, TeamPlayer.team_id == Team.id)
        .where(
            Team.tournament_id == tournament_id,
            or_(Team.captain_id == user_id, TeamPlayer.user_id == user_id),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _registered_player_keys(session: AsyncSession, tournament_id: int) -> set:
    result = await session.execute(
        select(TeamPlayer.minecraft_ign, TeamPlayer.discord_username)
        .join(Team, Team.id == TeamPlayer.team_id)
        .where(Team.tournament_id == tournament_id, TeamPlayer.minecraft_ign != "")
    )
    return {(ign.lower(), (discord or "").lower()) for ign, discord in result.all()}


async def ensure_users_exist(session: AsyncSession, user_ids: Iterable[int]) -> None:
    """
    Raises:
        ValidationError: One of the ids has no user
    """
    wanted = set(user_ids)
    if not wanted:
        return
    found = await session.scalar(select(func.count()).select_from(User).where(User.id.in_(wanted)))
    if found != len(wanted):
        raise ValidationError("Roster contains an unknown user")


async def reserve_slot(session: AsyncSession, tournament_id: int) -> None:
    """
    Take one registration slot in the current transaction.

    Raises:
        CapacityExceeded: Registration closed or no slot left; the
            transaction has been rolled back
    """
    reserved = await session.execute(
        update(Tournament)
        .where(
            Tournament.id == tournament_id,
            Tournament.status == TournamentStatus.REGISTRATION_OPEN.value,
            Tournament.is_closed.is_(False),
            Tournament.registered_teams < Tournament.max_teams,
        )
        .values(registered_teams=Tournament.registered_teams + 1)
        .execution_options(synchronize_session=False)
    )
    if reserved.rowcount != 1:
        await session.rollback()
        raise CapacityExceeded("Tournament is full")


async def release_slot(session: AsyncSession, tournament_id: int) -> None:
    """Give a registration slot back; never drops below zero."""
    await session.execute(
        update(Tournament)
        .where(Tournament.id == tournament_id, Tournament.registered_teams > 0)
        .values(registered_teams=Tournament.registered_teams - 1)
        .execution_options(synchronize_session=False)
    )


def integrity_conflict(exc: IntegrityError) -> Conflict:
    """
    The Conflict matching a unique violation on team names or rosters.

    Anything else is not a user-facing conflict and is raised again.
    """
    if is_unique_violation(exc, *TEAM_NAME_CONSTRAINT):
        return Conflict("Team name is already taken in this tournament")
    if is_unique_violation(exc, *ROSTER_CONSTRAINT):
        return Conflict("A player is already registered in another team")
    raise exc


async def create_team(
    session: AsyncSession,
    tournament_id: int,
    captain_id: int,
    team_name: str,
    players: Iterable[Dict[str, Any]],
    reward_receiver_ign: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Register a team for a tournament.

    The slot is taken with one guarded increment of registered_teams, in the
    same transaction as the team insert. The (tournament_id, team_name)
    unique constraint settles concurrent submissions of the same name.

    Args:
        session: Database session
        tournament_id: Tournament to register for
        captain_id: Effective user creating the team
        team_name: Requested name (unique within the tournament)
        players: Roster entries with user_id, minecraft_ign, discord_username
        reward_receiver_ign: Optional IGN from the roster that receives prizes

    Returns:
        Created team dict

    Raises:
        ValidationError, NotFound, Conflict, CapacityExceeded
    """
    team_name = (team_name or "").strip()
    roster = _normalize_players(players)

    await tournament_service.open_due_tournaments(session)
    result = await session.execute(
        select(Tournament)
        .where(Tournament.id == tournament_id)
        .execution_options(populate_existing=True)
    )
    tournament = result.scalar_one_or_none()
    if tournament is None:
        raise NotFound("Tournament not found")

    validate_roster(team_name, roster, tournament.team_size, reward_receiver_ign)
    await ensure_users_exist(session, [p["user_id"] for p in roster if p["user_id"] is not None])

    if tournament.status != TournamentStatus.REGISTRATION_OPEN.value or tournament.is_closed:
        raise CapacityExceeded("Registration is not open for this tournament")

    name_taken = await session.scalar(
        select(func.count())
        .select_from(Team)
        .where(Team.tournament_id == tournament_id, Team.team_name == team_name)
    )
    if name_taken:
        raise Conflict("Team name is already taken in this tournament")

    if await user_team_in_tournament(session, tournament_id, captain_id) is not None:
        raise Conflict("You are already part of a team in this tournament")

    member_ids = [p["user_id"] for p in roster if p["user_id"] is not None and p["user_id"] != captain_id]
    for member_id in member_ids:
        if await user_team_in_tournament(session, tournament_id, member_id) is not None:
            raise Conflict("A player is already registered in another team")

    taken_keys = await _registered_player_keys(session, tournament_id)
    for player in roster:
        if player["minecraft_ign"] and _player_key(player) in taken_keys:
            raise Conflict(f"Player {player['minecraft_ign']} is already registered in another team")

    await reserve_slot(session, tournament_id)

    team = Team(
        tournament_id=tournament_id,
        team_name=team_name,
        captain_id=captain_id,
        status=TeamStatus.PENDING.value,
        reward_receiver_ign=(reward_receiver_ign or "").strip() or None,
        player_count=len(roster),
        players=[
            TeamPlayer(
                tournament_id=tournament_id,
                position=index,
                user_id=player["user_id"],
                minecraft_ign=player["minecraft_ign"],
                discord_username=player["discord_username"],
            )
            for index, player in enumerate(roster)
        ],
    )
    session.add(team)
    try:
        await session.flush()
        await session.refresh(team, attribute_names=["created_at"])
        await session.commit()
    except IntegrityError as e:
        # Rolling back also releases the reserved slot
        await session.rollback()
        raise integrity_conflict(e)

    logger.info(f"Team {team.id} '{team_name}' registered for tournament {tournament_id} by user {captain_id}")
    await notify(
        tournament_channel(tournament_id),
        TEAMS_CHANGED,
        {"tournament_id": tournament_id, "team_id": team.id},
    )
    return {
        "id": team.id,
        "tournament_id": tournament_id,
        "team_name": team_name,
        "captain_id": captain_id,
        "status": team.status,
        "reward_receiver_ign": team.reward_receiver_ign,
        "players": roster,
        "created_at": isoformat_or_none(team.created_at),
    }


async def get_my_teams(session: AsyncSession, user_id: int) -> List[Dict[str, Any]]:
    """
    Teams the user captains or plays on, newest first.

    Returns:
        List of {id, team_name, status, is_captain, tournament: {id, name, date, status}}
    """
    member_team_ids = select(TeamPlayer.team_id).where(TeamPlayer.user_id == user_id)
    result = await session.execute(
        select(Team, Tournament)
        .join(Tournament, Tournament.id == Team.tournament_id)
        .where(or_(Team.captain_id == user_id, Team.id.in_(member_team_ids)))
        .order_by(Team.created_at.desc(), Team.id.desc())
    )
    teams = []
    for team, tournament in result.all():
        teams.append({
            "id": team.id,
            "team_name": team.team_name,
            "status": team.status,
            "is_captain": team.captain_id == user_id,
            "created_at": isoformat_or_none(team.created_at),
            "tournament": {
                "id": tournament.id,
                "name": tournament.name,
                "date": tournament.date,
                "status": tournament.status,
            },
        })
    return teams


async def get_team_detail(session: AsyncSession, user_id: int, team_id: int) -> Dict[str, Any]:
    """
    Full team detail for its captain or members.

    Anyone else gets NotFound, the same as for a missing team, so the
    response does not reveal that the team exists.
    """
    result = await session.execute(
        select(Team)
        .options(
            selectinload(Team.players),
            selectinload(Team.tournament),
            selectinload(Team.captain),
        )
        .where(Team.id == team_id)
        .execution_options(populate_existing=True)
    )
    team = result.scalar_one_or_none()
    if team is None:
        raise NotFound("Team not found")

    is_member = any(p.user_id == user_id for p in team.players)
    if team.captain_id != user_id and not is_member:
        raise NotFound("Team not found")

    captain: Optional[User] = team.captain
    tournament = team.tournament
    return {
        "id": team.id,
        "team_name": team.team_name,
        "status": team.status,
        "reward_receiver_ign": team.reward_receiver_ign,
        "is_captain": team.captain_id == user_id,
        "created_at": isoformat_or_none(team.created_at),
        "captain": {
            "id": team.captain_id,
            "name": (captain.display_name or captain.name) if captain else None,
            "minecraft_ign": captain.minecraft_ign if captain else None,
            "discord_username": captain.discord_username if captain else None,
        },
        "tournament": {
            "id": tournament.id,
            "name": tournament.name,
            "date": tournament.date,
            "start_time": tournament.start_time,
            "team_size": tournament.team_size,
            "status": tournament.status,
        },
        "players": [
            {
                "position": p.position,
                "user_id": p.user_id,
                "minecraft_ign": p.minecraft_ign,
                "discord_username": p.discord_username,
            }
            for p in team.players
        ],
    }


# ---------------------------------------------------------------------------
# Roster changes while registration is open
# ---------------------------------------------------------------------------


def must_disband(team_size: int, remaining_players: int) -> bool:
    """A team that loses every player, or a duo left with one, is disbanded."""
    return remaining_players == 0 or (team_size == 2 and remaining_players < 2)


async def _load_team_for_change(session: AsyncSession, team_id: int, user_id: int) -> Team:
    """
    Lock a team the user captains or plays on.

    Raises:
        NotFound: Team missing, or the user is not part of it
    """
    result = await session.execute(
        select(Team)
        .options(selectinload(Team.players), selectinload(Team.tournament))
        .where(Team.id == team_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    team = result.scalar_one_or_none()
    if team is None:
        raise NotFound("Team not found")
    if team.captain_id != user_id and not any(p.user_id == user_id for p in team.players):
        raise NotFound("Team not found")
    return team


def _require_registration_open(team: Team, action: str) -> None:
    if team.tournament.status != TournamentStatus.REGISTRATION_OPEN.value:
        raise ValidationError(f"Cannot {action} after registration has closed")


async def _disband(session: AsyncSession, team: Team) -> None:
    """Delete the team with its roster and invites, and give its slot back."""
    await session.execute(
        delete(TeamInvite)
        .where(
            TeamInvite.captain_id == team.captain_id,
            TeamInvite.tournament_id == team.tournament_id,
            TeamInvite.team_name == team.team_name,
        )
        .execution_options(synchronize_session=False)
    )
    await session.delete(team)
    await session.flush()
    await release_slot(session, team.tournament_id)


async def _drop_player(session: AsyncSession, team: Team, user_id: int) -> None:
    """
    Remove one linked player and free their seat.

    Raises:
        NotFound: The player was already removed by a concurrent request
    """
    removed = await session.execute(
        delete(TeamPlayer)
        .where(TeamPlayer.team_id == team.id, TeamPlayer.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    if removed.rowcount != 1:
        await session.rollback()
        raise NotFound("Player not found on this team")

    remaining_igns = [
        p.minecraft_ign for p in team.players if p.user_id != user_id and p.minecraft_ign
    ]
    reward_receiver = team.reward_receiver_ign
    if (reward_receiver or "").lower() not in {ign.lower() for ign in remaining_igns}:
        reward_receiver = remaining_igns[0] if remaining_igns else None

    await session.execute(
        update(Team)
        .where(Team.id == team.id, Team.player_count > 0)
        .values(player_count=Team.player_count - 1, reward_receiver_ign=reward_receiver)
        .execution_options(synchronize_session=False)
    )


async def _notify_roster_change(tournament_id: int, team_id: int, disbanded: bool) -> None:
    await notify(
        tournament_channel(tournament_id),
        TEAMS_CHANGED,
        {"tournament_id": tournament_id, "team_id": team_id},
    )
    if disbanded:
        await notify(TOURNAMENTS_CHANNEL, TOURNAMENTS_CHANGED, {"tournament_id": tournament_id})


async def leave_team(session: AsyncSession, user_id: int, team_id: int) -> Dict[str, Any]:
    """
    Leave a team while registration is open.

    A solo registration is withdrawn. A captain of a larger team cannot
    leave; they remove a teammate or transfer captaincy first. A team left
    without enough players is disbanded and its slot released.

    Returns:
        {"team_id", "disbanded"}

    Raises:
        NotFound: Team missing or the user is not on it
        ValidationError: Registration closed, or the captain tries to leave
    """
    team = await _load_team_for_change(session, team_id, user_id)
    _require_registration_open(team, "leave")
    tournament_id = team.tournament_id
    team_size = team.tournament.team_size

    remaining = [p for p in team.players if p.user_id != user_id]
    if team_size == 1:
        disbanded = True
        await _disband(session, team)
    elif team.captain_id == user_id:
        raise ValidationError(
            "Captain cannot leave. Transfer captaincy or remove a teammate first"
        )
    elif must_disband(team_size, len(remaining)):
        disbanded = True
        await _disband(session, team)
    else:
        disbanded = False
        await _drop_player(session, team, user_id)
    await session.commit()

    logger.info(f"User {user_id} left team {team_id} (disbanded={disbanded})")
    await _notify_roster_change(tournament_id, team_id, disbanded)
    return {"team_id": team_id, "disbanded": disbanded}


async def remove_player(
    session: AsyncSession, captain_id: int, team_id: int, player_user_id: int
) -> Dict[str, Any]:
    """
    Captain removes a linked player from the roster while registration is open.

    The freed seat can be filled with a new invite. A team left without
    enough players is disbanded.

    Raises:
        NotFound: Team missing, caller not on it, or player not on the roster
        Forbidden: Caller is a player but not the captain
        ValidationError: Removing yourself, or registration closed
    """
    if player_user_id == captain_id:
        raise ValidationError("Use leave team to withdraw; the captain cannot be removed")

    team = await _load_team_for_change(session, team_id, captain_id)
    if team.captain_id != captain_id:
        raise Forbidden("Only the captain can remove a player")
    _require_registration_open(team, "remove players")
    if not any(p.user_id == player_user_id for p in team.players):
        raise NotFound("Player not found on this team")

    tournament_id = team.tournament_id
    remaining = [p for p in team.players if p.user_id != player_user_id]
    disbanded = must_disband(team.tournament.team_size, len(remaining))
    if disbanded:
        await _disband(session, team)
    else:
        await _drop_player(session, team, player_user_id)
    await session.commit()

    logger.info(f"Captain {captain_id} removed user {player_user_id} from team {team_id} (disbanded={disbanded})")
    await _notify_roster_change(tournament_id, team_id, disbanded)
    return {"team_id": team_id, "disbanded": disbanded}


async def transfer_captaincy(
    session: AsyncSession, captain_id: int, team_id: int, new_captain_id: int
) -> Dict[str, Any]:
    """
    Hand the captaincy to another player on the roster.

    Raises:
        NotFound: Team missing or caller not on it
        Forbidden: Caller is not the captain
        ValidationError: New captain is the caller or not on the roster, or
            registration closed
        Conflict: Captaincy changed concurrently
    """
    if new_captain_id == captain_id:
        raise ValidationError("You are already the captain")

    team = await _load_team_for_change(session, team_id, captain_id)
    if team.captain_id != captain_id:
        raise Forbidden("Only the captain can transfer captaincy")
    if not any(p.user_id == new_captain_id for p in team.players):
        raise ValidationError("The new captain must be a player on this team")
    _require_registration_open(team, "transfer captaincy")

    result = await session.execute(
        update(Team)
        .where(Team.id == team_id, Team.captain_id == captain_id)
        .values(captain_id=new_captain_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await session.rollback()
        raise Conflict("Captaincy has already changed")
    await session.commit()

    logger.info(f"Captaincy of team {team_id} transferred from user {captain_id} to user {new_captain_id}")
    await notify(
        tournament_channel(team.tournament_id),
        TEAMS_CHANGED,
        {"tournament_id": team.tournament_id, "team_id": team_id},
    )
    return {"team_id": team_id, "captain_id": new_captain_id}


# ---------------------------------------------------------------------------
# Admin review
# ---------------------------------------------------------------------------


def team_to_admin_dict(team: Team) -> Dict[str, Any]:
    """Serialize a team with its roster loaded."""
    return {
        "id": team.id,
        "tournament_id": team.tournament_id,
        "team_name": team.team_name,
        "captain_id": team.captain_id,
        "status": team.status,
        "reward_receiver_ign": team.reward_receiver_ign,
        "player_count": team.player_count,
        "created_at": isoformat_or_none(team.created_at),
        "players": [
            {
                "position": p.position,
                "user_id": p.user_id,
                "minecraft_ign": p.minecraft_ign,
                "discord_username": p.discord_username,
            }
            for p in team.players
        ],
    }


async def _load_team(session: AsyncSession, team_id: int) -> Team:
    result = await session.execute(
        select(Team)
        .options(selectinload(Team.players))
        .where(Team.id == team_id)
        .execution_options(populate_existing=True)
    )
    team = result.scalar_one_or_none()
    if team is None:
        raise NotFound("Team not found")
    return team


async def list_tournament_teams(session: AsyncSession, tournament_id: int) -> List[Dict[str, Any]]:
    """Every team of a tournament with rosters, newest first (admin view)."""
    if await session.get(Tournament, tournament_id) is None:
        raise NotFound("Tournament not found")
    result = await session.execute(
        select(Team)
        .options(selectinload(Team.players))
        .where(Team.tournament_id == tournament_id)
        .order_by(Team.created_at.desc(), Team.id.desc())
    )
    return [team_to_admin_dict(team) for team in result.scalars().all()]


async def set_team_status(session: AsyncSession, actor_id: int, team_id: int, status: str) -> Dict[str, Any]:
    """
    Approve or reject a team.

    Raises:
        ValidationError: Status other than approved/rejected
        NotFound: Team does not exist
    """
    if status not in REVIEW_STATUSES:
        raise ValidationError("status must be 'approved' or 'rejected'")

    team = await _load_team(session, team_id)
    previous = team.status
    team.status = status
    await session.commit()

    if previous != status:
        logger.info(f"Team {team_id} set to {status} by user {actor_id}")
        await audit_service.record(
            actor_id,
            AuditAction.TEAM_STATUS_CHANGE.value,
            AuditTargetType.TEAM.value,
            target_id=str(team_id),
            details={"from": previous, "to": status},
        )
        await notify(
            tournament_channel(team.tournament_id),
            TEAMS_CHANGED,
            {"tournament_id": team.tournament_id, "team_id": team_id},
        )
    return team_to_admin_dict(await _load_team(session, team_id))


async def disband_team(session: AsyncSession, actor_id: int, team_id: int) -> None:
    """
    Delete a team and release its registration slot (admin).

    Raises:
        NotFound: Team does not exist
    """
    team = await _load_team(session, team_id)
    tournament_id = team.tournament_id
    team_name = team.team_name
    await _disband(session, team)
    await session.commit()

    logger.info(f"Team {team_id} disbanded by user {actor_id}")
    await audit_service.record(
        actor_id,
        AuditAction.TEAM_DISBAND.value,
        AuditTargetType.TEAM.value,
        target_id=str(team_id),
        details={"team_name": team_name, "tournament_id": tournament_id},
    )
    await _notify_roster_change(tournament_id, team_id, disbanded=True)
