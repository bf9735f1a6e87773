"""
Team invites: a captain asks users to play with them in a tournament.

Invites are addressed by (captain, tournament, team name). Before the team
exists they form it: once team_size - 1 invitees have accepted, the team is
created with the captain and every accepted player, taking a registration
slot the same way a direct registration does. After that, an invite fills a
free seat on the existing team with a guarded increment of player_count.

An invite is resolved exactly once. When there is no seat or slot left the
invite stays pending so it can be accepted later.
"""

import logging
from typing import Optional, Dict, Any, List

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tournament_hub.database.db import is_unique_violation
from tournament_hub.database.models import (
    Team,
    TeamInvite,
    TeamPlayer,
    TeamStatus,
    Tournament,
    TournamentStatus,
    User,
    InviteStatus,
)
from tournament_hub.services import tournament_service
from tournament_hub.services.errors import (
    NotFound,
    Forbidden,
    ValidationError,
    Conflict,
    CapacityExceeded,
)
from tournament_hub.services.team_service import (
    user_team_in_tournament,
    reserve_slot,
    integrity_conflict,
    ROSTER_CONSTRAINT,
    TEAM_NAME_MAX_LENGTH,
)
from tournament_hub.services.user_service import display_name_for
from tournament_hub.services.websocket_manager import notify, tournament_channel, TEAMS_CHANGED
from tournament_hub.utils.datetime_utils import utcnow, isoformat_or_none

logger = logging.getLogger(__name__)


def invite_to_dict(invite: TeamInvite, team_id: Optional[int] = None) -> Dict[str, Any]:
    """Serialize an invite with captain, invitee and tournament loaded."""
    return {
        "id": invite.id,
        "captain_id": invite.captain_id,
        "captain_name": display_name_for(invite.captain),
        "to_user_id": invite.to_user_id,
        "to_user_name": display_name_for(invite.to_user),
        "tournament_id": invite.tournament_id,
        "tournament_name": invite.tournament.name if invite.tournament else None,
        "team_name": invite.team_name,
        "status": invite.status,
        "team_id": team_id,
        "created_at": isoformat_or_none(invite.created_at),
        "responded_at": isoformat_or_none(invite.responded_at),
    }


async def _load_invite(session: AsyncSession, invite_id: int) -> Optional[TeamInvite]:
    result = await session.execute(
        select(TeamInvite)
        .options(
            selectinload(TeamInvite.captain),
            selectinload(TeamInvite.to_user),
            selectinload(TeamInvite.tournament),
        )
        .where(TeamInvite.id == invite_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _team_by_name(session: AsyncSession, tournament_id: int, team_name: str) -> Optional[Team]:
    result = await session.execute(
        select(Team)
        .options(selectinload(Team.players))
        .where(Team.tournament_id == tournament_id, Team.team_name == team_name)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _invite_tuple(captain_id: int, tournament_id: int, team_name: str):
    return (
        TeamInvite.captain_id == captain_id,
        TeamInvite.tournament_id == tournament_id,
        TeamInvite.team_name == team_name,
    )


async def invite_to_team(
    session: AsyncSession,
    captain_id: int,
    tournament_id: int,
    team_name: str,
    invitee_user_id: int,
) -> Dict[str, Any]:
    """
    Create a pending invite.

    With no team of that name yet, the invite is part of forming one: the
    captain must not be on another team, registration must be open with a
    slot left, and at most team_size - 1 invites may be outstanding. With a
    team, it must be the captain's own.

    Raises:
        ValidationError: Blank or oversized team name, inviting yourself, or
            a solo tournament
        NotFound: Tournament or invitee missing
        Conflict: Name used by another captain's team, an invite for this
            tuple already exists (pending or resolved), the invitee or the
            captain is already on a team, or every teammate is already invited
        CapacityExceeded: Registration not open, or the tournament is full
    """
    team_name = (team_name or "").strip()
    if not team_name:
        raise ValidationError("Team name is required")
    if len(team_name) > TEAM_NAME_MAX_LENGTH:
        raise ValidationError(f"Team name must be at most {TEAM_NAME_MAX_LENGTH} characters")
    if invitee_user_id == captain_id:
        raise ValidationError("You cannot invite yourself")

    await tournament_service.open_due_tournaments(session)
    result = await session.execute(
        select(Tournament)
        .where(Tournament.id == tournament_id)
        .execution_options(populate_existing=True)
    )
    tournament = result.scalar_one_or_none()
    if tournament is None:
        raise NotFound("Tournament not found")
    if tournament.status != TournamentStatus.REGISTRATION_OPEN.value or tournament.is_closed:
        raise CapacityExceeded("Registration is not open for this tournament")

    team = await _team_by_name(session, tournament_id, team_name)
    if team is not None and team.captain_id != captain_id:
        raise Conflict("Team name is already taken in this tournament")

    if await session.get(User, invitee_user_id) is None:
        raise NotFound("User not found")

    existing = await session.scalar(
        select(func.count())
        .select_from(TeamInvite)
        .where(*_invite_tuple(captain_id, tournament_id, team_name), TeamInvite.to_user_id == invitee_user_id)
    )
    if existing:
        raise Conflict("An invite for this player already exists")

    if await user_team_in_tournament(session, tournament_id, invitee_user_id) is not None:
        raise Conflict("This player is already on a team in this tournament")

    if team is None:
        if tournament.team_size < 2:
            raise ValidationError("This tournament has no teammates to invite")
        if tournament.registered_teams >= tournament.max_teams:
            raise CapacityExceeded("Tournament is full")
        if await user_team_in_tournament(session, tournament_id, captain_id) is not None:
            raise Conflict("You are already part of a team in this tournament")
        outstanding = await session.scalar(
            select(func.count())
            .select_from(TeamInvite)
            .where(
                *_invite_tuple(captain_id, tournament_id, team_name),
                TeamInvite.status != InviteStatus.REJECTED.value,
            )
        )
        if outstanding >= tournament.team_size - 1:
            raise Conflict("Every teammate for this team has already been invited")

    invite = TeamInvite(
        captain_id=captain_id,
        to_user_id=invitee_user_id,
        tournament_id=tournament_id,
        team_name=team_name,
        status=InviteStatus.PENDING.value,
    )
    session.add(invite)
    try:
        await session.flush()
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise Conflict("An invite for this player already exists")

    logger.info(f"User {captain_id} invited user {invitee_user_id} to '{team_name}' (tournament {tournament_id})")
    return invite_to_dict(await _load_invite(session, invite.id))


async def _resolve(session: AsyncSession, invite_id: int, status: str) -> bool:
    """Move a pending invite to ``status``; False if it was already resolved."""
    result = await session.execute(
        update(TeamInvite)
        .where(TeamInvite.id == invite_id, TeamInvite.status == InviteStatus.PENDING.value)
        .values(status=status, responded_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _join_existing_team(session: AsyncSession, invite: TeamInvite, team: Team, invitee_user_id: int) -> None:
    """Take a free seat on the team and add the invitee to its roster."""
    team_size = (
        select(Tournament.team_size)
        .where(Tournament.id == Team.tournament_id)
        .scalar_subquery()
    )
    seat = await session.execute(
        update(Team)
        .where(Team.id == team.id, Team.player_count < team_size)
        .values(player_count=Team.player_count + 1)
        .execution_options(synchronize_session=False)
    )
    if seat.rowcount != 1:
        await session.rollback()
        raise CapacityExceeded("Team is full")

    if not await _resolve(session, invite.id, InviteStatus.ACCEPTED.value):
        # Releases the seat taken above
        await session.rollback()
        raise Conflict("Invite has already been responded to")

    next_position = await session.scalar(
        select(func.coalesce(func.max(TeamPlayer.position) + 1, 0)).where(TeamPlayer.team_id == team.id)
    )
    invitee = await session.get(User, invitee_user_id)
    session.add(
        TeamPlayer(
            team_id=team.id,
            tournament_id=team.tournament_id,
            position=next_position,
            user_id=invitee_user_id,
            minecraft_ign=(invitee.minecraft_ign or "") if invitee else "",
            discord_username=(invitee.discord_username or "") if invitee else "",
        )
    )
    try:
        await session.flush()
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        if is_unique_violation(e, *ROSTER_CONSTRAINT):
            raise Conflict("You are already on a team in this tournament")
        raise
    logger.info(f"User {invitee_user_id} accepted invite {invite.id} and joined team {team.id}")


async def _accept_and_form(session: AsyncSession, invite: TeamInvite) -> Optional[int]:
    """
    Accept an invite for a team that does not exist yet.

    The tournament row is locked first so concurrent acceptances count each
    other. When this acceptance completes the roster, the team is created
    and a registration slot taken in the same transaction.

    Returns:
        Id of the new team, or None while teammates are still missing
    """
    tournament = (
        await session.execute(
            select(Tournament)
            .where(Tournament.id == invite.tournament_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one()

    if not await _resolve(session, invite.id, InviteStatus.ACCEPTED.value):
        await session.rollback()
        raise Conflict("Invite has already been responded to")

    result = await session.execute(
        select(TeamInvite)
        .options(selectinload(TeamInvite.to_user))
        .where(
            *_invite_tuple(invite.captain_id, invite.tournament_id, invite.team_name),
            TeamInvite.status == InviteStatus.ACCEPTED.value,
        )
        .order_by(TeamInvite.created_at.asc(), TeamInvite.id.asc())
        .execution_options(populate_existing=True)
    )
    accepted = result.scalars().all()
    if len(accepted) < tournament.team_size - 1:
        await session.commit()
        logger.info(f"Invite {invite.id} accepted; '{invite.team_name}' is waiting for more teammates")
        return None

    captain = await session.get(User, invite.captain_id)
    members = [captain] + [a.to_user for a in accepted]
    for member in members:
        if await user_team_in_tournament(session, invite.tournament_id, member.id) is not None:
            await session.rollback()
            raise Conflict(f"{display_name_for(member)} is already on a team in this tournament")

    await reserve_slot(session, invite.tournament_id)

    first_ign = next((m.minecraft_ign for m in members if m.minecraft_ign), None)
    team = Team(
        tournament_id=invite.tournament_id,
        team_name=invite.team_name,
        captain_id=invite.captain_id,
        status=TeamStatus.PENDING.value,
        reward_receiver_ign=first_ign,
        player_count=len(members),
        players=[
            TeamPlayer(
                tournament_id=invite.tournament_id,
                position=index,
                user_id=member.id,
                minecraft_ign=member.minecraft_ign or "",
                discord_username=member.discord_username or "",
            )
            for index, member in enumerate(members)
        ],
    )
    session.add(team)
    try:
        await session.flush()
        await session.commit()
    except IntegrityError as e:
        # Rolling back also releases the slot and leaves the invite pending
        await session.rollback()
        raise integrity_conflict(e)

    logger.info(f"Team {team.id} '{invite.team_name}' formed from invites for tournament {invite.tournament_id}")
    return team.id


async def respond_to_invite(
    session: AsyncSession,
    invitee_user_id: int,
    invite_id: int,
    accept: bool,
) -> Dict[str, Any]:
    """
    Accept or reject an invite addressed to the caller.

    Accepting joins the captain's team if it exists; otherwise it counts
    towards forming it, and the last acceptance creates the team.

    Returns:
        The invite, with team_id set once the caller is on a team

    Raises:
        NotFound: Invite (or, on accept, the team it pointed to) does not exist
        Forbidden: Invite is addressed to someone else
        Conflict: Invite already resolved, or the caller (or, when forming,
            another member) already has a team in this tournament
        CapacityExceeded: No free seat or registration slot; the invite
            stays pending
    """
    invite = await _load_invite(session, invite_id)
    if invite is None:
        raise NotFound("Invite not found")
    if invite.to_user_id != invitee_user_id:
        raise Forbidden("This invite is not addressed to you")
    if invite.status != InviteStatus.PENDING.value:
        raise Conflict("Invite has already been responded to")

    if not accept:
        if not await _resolve(session, invite_id, InviteStatus.REJECTED.value):
            await session.rollback()
            raise Conflict("Invite has already been responded to")
        await session.commit()
        logger.info(f"User {invitee_user_id} rejected invite {invite_id}")
        return invite_to_dict(await _load_invite(session, invite_id))

    if await user_team_in_tournament(session, invite.tournament_id, invitee_user_id) is not None:
        raise Conflict("You are already on a team in this tournament")

    team = await _team_by_name(session, invite.tournament_id, invite.team_name)
    if team is None:
        team_id = await _accept_and_form(session, invite)
    else:
        # Captaincy may have moved on, but the inviter must still be on the team
        roster_ids = {p.user_id for p in team.players}
        if team.captain_id != invite.captain_id and invite.captain_id not in roster_ids:
            raise NotFound("Team not found")
        await _join_existing_team(session, invite, team, invitee_user_id)
        team_id = team.id

    if team_id is not None:
        await notify(
            tournament_channel(invite.tournament_id),
            TEAMS_CHANGED,
            {"tournament_id": invite.tournament_id, "team_id": team_id},
        )
    return invite_to_dict(await _load_invite(session, invite_id), team_id=team_id)


async def list_received_invites(session: AsyncSession, user_id: int) -> List[Dict[str, Any]]:
    """Pending invites addressed to the user, newest first."""
    result = await session.execute(
        select(TeamInvite)
        .options(
            selectinload(TeamInvite.captain),
            selectinload(TeamInvite.to_user),
            selectinload(TeamInvite.tournament),
        )
        .where(TeamInvite.to_user_id == user_id, TeamInvite.status == InviteStatus.PENDING.value)
        .order_by(TeamInvite.created_at.desc(), TeamInvite.id.desc())
    )
    return [invite_to_dict(i) for i in result.scalars().all()]


async def list_sent_invites(
    session: AsyncSession,
    captain_id: int,
    tournament_id: Optional[int] = None,
    team_name: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Invites the captain has sent, newest first, optionally for one team."""
    query = (
        select(TeamInvite)
        .options(
            selectinload(TeamInvite.captain),
            selectinload(TeamInvite.to_user),
            selectinload(TeamInvite.tournament),
        )
        .where(TeamInvite.captain_id == captain_id)
    )
    if tournament_id is not None:
        query = query.where(TeamInvite.tournament_id == tournament_id)
    if team_name:
        query = query.where(TeamInvite.team_name == team_name.strip())
    result = await session.execute(query.order_by(TeamInvite.created_at.desc(), TeamInvite.id.desc()))
    return [invite_to_dict(i) for i in result.scalars().all()]
