"""
Tests for team registration (capacity, uniqueness, roster validation),
roster changes while registration is open, and admin review.
"""

import asyncio

import pytest
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError

from tournament_hub.database.models import Tournament, Team, TeamPlayer, TeamInvite, TournamentStatus
from tournament_hub.services import team_service, tournament_service, invite_service, audit_service
from tournament_hub.services.errors import (
    NotFound,
    Forbidden,
    ValidationError,
    Conflict,
    CapacityExceeded,
)


def roster_for(*users):
    return [
        {"user_id": u.id, "minecraft_ign": u.minecraft_ign, "discord_username": u.discord_username}
        for u in users
    ]


async def registered_count(session, tournament_id):
    return await session.scalar(
        select(Tournament.registered_teams)
        .where(Tournament.id == tournament_id)
        .execution_options(populate_existing=True)
    )


class TestCapacity:
    """Slot reservation against max_teams."""

    @pytest.mark.asyncio
    async def test_third_team_rejected_when_two_slots(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="solo", max_teams=2)
        alice, bob, carol = await make_user(), await make_user(), await make_user()

        alpha = await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice))
        beta = await team_service.create_team(db_session, t.id, bob.id, "Beta", roster_for(bob))

        with pytest.raises(CapacityExceeded):
            await team_service.create_team(db_session, t.id, carol.id, "Gamma", roster_for(carol))

        assert alpha["team_name"] == "Alpha"
        assert beta["team_name"] == "Beta"
        assert await registered_count(db_session, t.id) == 2
        team_count = await db_session.scalar(
            select(func.count()).select_from(Team).where(Team.tournament_id == t.id)
        )
        assert team_count == 2

        # A full tournament drops out of the public list
        assert await tournament_service.list_public(db_session) == []

    @pytest.mark.asyncio
    async def test_concurrent_registrations_never_overfill(self, session_maker, make_user, make_tournament):
        slots = 3
        t = await make_tournament(type="solo", max_teams=slots)
        captains = [await make_user() for _ in range(slots + 1)]

        async def register(index, captain):
            async with session_maker() as session:
                return await team_service.create_team(
                    session, t.id, captain.id, f"Team {index}", roster_for(captain)
                )

        results = await asyncio.gather(
            *(register(i, c) for i, c in enumerate(captains)),
            return_exceptions=True,
        )

        successes = [r for r in results if isinstance(r, dict)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == slots
        assert len(failures) == 1
        assert isinstance(failures[0], CapacityExceeded)

        async with session_maker() as session:
            assert await registered_count(session, t.id) == slots

    @pytest.mark.asyncio
    async def test_registration_not_open(self, db_session, make_user, make_tournament):
        captain = await make_user()
        draft = await make_tournament(status=TournamentStatus.DRAFT.value)
        closed = await make_tournament(is_closed=True)

        with pytest.raises(CapacityExceeded):
            await team_service.create_team(db_session, draft.id, captain.id, "Alpha", roster_for(captain))
        await db_session.rollback()
        with pytest.raises(CapacityExceeded):
            await team_service.create_team(db_session, closed.id, captain.id, "Alpha", roster_for(captain))

    @pytest.mark.asyncio
    async def test_missing_tournament(self, db_session, make_user):
        captain = await make_user()
        with pytest.raises(NotFound):
            await team_service.create_team(db_session, 999, captain.id, "Alpha", roster_for(captain))


class TestUniqueness:
    """Team names and players are unique within a tournament."""

    @pytest.mark.asyncio
    async def test_same_name_rejected_in_same_tournament(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="solo")
        alice, bob = await make_user(), await make_user()
        await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice))

        with pytest.raises(Conflict):
            await team_service.create_team(db_session, t.id, bob.id, "Alpha", roster_for(bob))
        await db_session.rollback()

        assert await registered_count(db_session, t.id) == 1

    @pytest.mark.asyncio
    async def test_same_name_allowed_in_other_tournament(self, db_session, make_user, make_tournament):
        t1 = await make_tournament(type="solo")
        t2 = await make_tournament(type="solo")
        alice, bob = await make_user(), await make_user()

        await team_service.create_team(db_session, t1.id, alice.id, "Alpha", roster_for(alice))
        created = await team_service.create_team(db_session, t2.id, bob.id, "Alpha", roster_for(bob))

        assert created["tournament_id"] == t2.id

    @pytest.mark.asyncio
    async def test_captain_cannot_register_twice(self, db_session, make_user, make_tournament):
        t = await make_tournament()
        alice = await make_user()
        await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice))

        with pytest.raises(Conflict):
            await team_service.create_team(db_session, t.id, alice.id, "Beta", roster_for(alice))

    @pytest.mark.asyncio
    async def test_player_already_on_another_team(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="duo")
        alice, bob, carol = await make_user(), await make_user(), await make_user()
        await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice, bob))

        with pytest.raises(Conflict):
            await team_service.create_team(db_session, t.id, carol.id, "Beta", roster_for(carol, bob))

    @pytest.mark.asyncio
    async def test_handles_taken_by_unlinked_player(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="duo")
        alice, bob = await make_user(), await make_user()
        guest = {"minecraft_ign": "Steve", "discord_username": "steve#1"}
        await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice) + [guest])

        with pytest.raises(Conflict):
            await team_service.create_team(
                db_session, t.id, bob.id, "Beta", roster_for(bob) + [{"minecraft_ign": "STEVE", "discord_username": "Steve#1"}]
            )

    @pytest.mark.asyncio
    async def test_database_keeps_one_team_per_user(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="duo")
        alice, bob, carol = await make_user(), await make_user(), await make_user()
        await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice, bob))
        beta = await team_service.create_team(db_session, t.id, carol.id, "Beta", roster_for(carol))

        db_session.add(
            TeamPlayer(team_id=beta["id"], tournament_id=t.id, position=1, user_id=bob.id, minecraft_ign="Other")
        )
        with pytest.raises(IntegrityError) as exc_info:
            await db_session.flush()
        await db_session.rollback()

        conflict = team_service.integrity_conflict(exc_info.value)
        assert isinstance(conflict, Conflict)
        assert "another team" in str(conflict)


class TestRosterValidation:
    """Input checks before any slot is taken."""

    @pytest.mark.asyncio
    async def test_blank_name(self, db_session, make_user, make_tournament):
        t = await make_tournament()
        alice = await make_user()
        with pytest.raises(ValidationError):
            await team_service.create_team(db_session, t.id, alice.id, "   ", roster_for(alice))

    @pytest.mark.asyncio
    async def test_too_many_players(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="duo")
        alice, bob, carol = await make_user(), await make_user(), await make_user()
        with pytest.raises(ValidationError):
            await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice, bob, carol))

    @pytest.mark.asyncio
    async def test_duplicate_players(self, db_session, make_user, make_tournament):
        t = await make_tournament()
        alice = await make_user()
        with pytest.raises(ValidationError):
            await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice, alice))

    @pytest.mark.asyncio
    async def test_reward_receiver_must_be_on_roster(self, db_session, make_user, make_tournament):
        t = await make_tournament()
        alice = await make_user()
        with pytest.raises(ValidationError):
            await team_service.create_team(
                db_session, t.id, alice.id, "Alpha", roster_for(alice), reward_receiver_ign="Nobody"
            )

    @pytest.mark.asyncio
    async def test_validation_does_not_take_a_slot(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="solo", max_teams=1)
        alice = await make_user()
        with pytest.raises(ValidationError):
            await team_service.create_team(db_session, t.id, alice.id, "", roster_for(alice))
        await db_session.rollback()

        assert await registered_count(db_session, t.id) == 0

    @pytest.mark.asyncio
    async def test_unknown_user_on_roster(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="duo", max_teams=1)
        alice = await make_user()
        ghost = {"user_id": 999, "minecraft_ign": "Ghost", "discord_username": "ghost#1"}

        with pytest.raises(ValidationError):
            await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice) + [ghost])
        await db_session.rollback()

        assert await registered_count(db_session, t.id) == 0

    def test_empty_roster_rows_are_dropped(self):
        rows = team_service._normalize_players([
            {"minecraft_ign": "  Steve ", "discord_username": " s#1 "},
            {"minecraft_ign": "", "discord_username": "ghost"},
            {"user_id": 7},
        ])
        assert rows == [
            {"user_id": None, "minecraft_ign": "Steve", "discord_username": "s#1"},
            {"user_id": 7, "minecraft_ign": "", "discord_username": ""},
        ]


class TestTeamViews:
    """My teams and team detail."""

    @pytest.mark.asyncio
    async def test_my_teams_includes_captain_and_member_roles(self, db_session, make_user, make_tournament):
        t1 = await make_tournament(type="duo", name="First Cup")
        t2 = await make_tournament(type="duo", name="Second Cup")
        alice, bob, carol = await make_user(), await make_user(), await make_user()

        await team_service.create_team(db_session, t1.id, alice.id, "Alpha", roster_for(alice, bob))
        await team_service.create_team(db_session, t2.id, bob.id, "Beta", roster_for(bob, carol))

        teams = await team_service.get_my_teams(db_session, bob.id)

        assert [team["team_name"] for team in teams] == ["Beta", "Alpha"]
        assert [team["is_captain"] for team in teams] == [True, False]
        assert teams[1]["tournament"]["name"] == "First Cup"

    @pytest.mark.asyncio
    async def test_detail_visible_to_member(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="duo")
        alice, bob = await make_user(), await make_user()
        created = await team_service.create_team(
            db_session, t.id, alice.id, "Alpha", roster_for(alice, bob), reward_receiver_ign=bob.minecraft_ign
        )

        detail = await team_service.get_team_detail(db_session, bob.id, created["id"])

        assert detail["is_captain"] is False
        assert detail["captain"]["id"] == alice.id
        assert detail["reward_receiver_ign"] == bob.minecraft_ign
        assert [p["user_id"] for p in detail["players"]] == [alice.id, bob.id]
        assert detail["tournament"]["team_size"] == 2

    @pytest.mark.asyncio
    async def test_detail_hidden_from_outsiders(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="solo")
        alice, mallory = await make_user(), await make_user()
        created = await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice))

        with pytest.raises(NotFound):
            await team_service.get_team_detail(db_session, mallory.id, created["id"])
        with pytest.raises(NotFound):
            await team_service.get_team_detail(db_session, alice.id, 999)


async def team_row(session, team_id):
    return await session.scalar(
        select(Team).where(Team.id == team_id).execution_options(populate_existing=True)
    )


async def roster_ids(session, team_id):
    result = await session.execute(
        select(TeamPlayer.user_id)
        .where(TeamPlayer.team_id == team_id)
        .order_by(TeamPlayer.position)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def close_registration(session, tournament_id):
    await session.execute(
        update(Tournament)
        .where(Tournament.id == tournament_id)
        .values(status=TournamentStatus.REGISTRATION_CLOSED.value)
    )
    await session.commit()


class TestLeaveTeam:
    """leave_team behavior."""

    @pytest.mark.asyncio
    async def test_player_leaves_squad(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="squad")
        alice, bob, carol = await make_user(), await make_user(), await make_user()
        team = await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice, bob, carol))

        result = await team_service.leave_team(db_session, bob.id, team["id"])

        assert result == {"team_id": team["id"], "disbanded": False}
        assert await roster_ids(db_session, team["id"]) == [alice.id, carol.id]
        assert (await team_row(db_session, team["id"])).player_count == 2
        assert await registered_count(db_session, t.id) == 1

    @pytest.mark.asyncio
    async def test_duo_left_with_one_player_is_disbanded(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="duo")
        alice, bob = await make_user(), await make_user()
        team = await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice, bob))

        result = await team_service.leave_team(db_session, bob.id, team["id"])

        assert result["disbanded"] is True
        assert await team_row(db_session, team["id"]) is None
        assert await registered_count(db_session, t.id) == 0

    @pytest.mark.asyncio
    async def test_solo_leave_withdraws_registration(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="solo", max_teams=1)
        alice, bob = await make_user(), await make_user()
        team = await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice))

        await team_service.leave_team(db_session, alice.id, team["id"])

        # The released slot can be taken again
        await team_service.create_team(db_session, t.id, bob.id, "Beta", roster_for(bob))
        assert await registered_count(db_session, t.id) == 1

    @pytest.mark.asyncio
    async def test_captain_cannot_leave_squad(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="squad")
        alice, bob = await make_user(), await make_user()
        team = await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice, bob))

        with pytest.raises(ValidationError):
            await team_service.leave_team(db_session, alice.id, team["id"])
        await db_session.rollback()

        assert await roster_ids(db_session, team["id"]) == [alice.id, bob.id]

    @pytest.mark.asyncio
    async def test_outsider_cannot_leave(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="squad")
        alice, mallory = await make_user(), await make_user()
        team = await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice))

        with pytest.raises(NotFound):
            await team_service.leave_team(db_session, mallory.id, team["id"])

    @pytest.mark.asyncio
    async def test_leave_after_registration_closed(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="squad")
        alice, bob = await make_user(), await make_user()
        team = await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice, bob))
        await close_registration(db_session, t.id)

        with pytest.raises(ValidationError):
            await team_service.leave_team(db_session, bob.id, team["id"])


class TestRemovePlayer:
    """remove_player behavior."""

    @pytest.mark.asyncio
    async def test_captain_removes_player(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="squad")
        alice, bob, carol = await make_user(), await make_user(), await make_user()
        team = await team_service.create_team(
            db_session, t.id, alice.id, "Alpha", roster_for(alice, bob, carol), reward_receiver_ign=bob.minecraft_ign
        )

        result = await team_service.remove_player(db_session, alice.id, team["id"], bob.id)

        assert result["disbanded"] is False
        assert await roster_ids(db_session, team["id"]) == [alice.id, carol.id]
        row = await team_row(db_session, team["id"])
        assert row.player_count == 2
        # The removed player can no longer receive prizes
        assert row.reward_receiver_ign == alice.minecraft_ign

    @pytest.mark.asyncio
    async def test_freed_seat_can_be_refilled_by_invite(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="squad")
        alice, bob, carol, dave, eve = [await make_user() for _ in range(5)]
        team = await team_service.create_team(
            db_session, t.id, alice.id, "Alpha", roster_for(alice, bob, carol, dave)
        )

        await team_service.remove_player(db_session, alice.id, team["id"], dave.id)
        invite = await invite_service.invite_to_team(db_session, alice.id, t.id, "Alpha", eve.id)
        await invite_service.respond_to_invite(db_session, eve.id, invite["id"], accept=True)

        assert await roster_ids(db_session, team["id"]) == [alice.id, bob.id, carol.id, eve.id]
        assert (await team_row(db_session, team["id"])).player_count == 4

    @pytest.mark.asyncio
    async def test_only_captain_can_remove(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="squad")
        alice, bob, carol = await make_user(), await make_user(), await make_user()
        team = await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice, bob, carol))

        with pytest.raises(Forbidden):
            await team_service.remove_player(db_session, bob.id, team["id"], carol.id)

    @pytest.mark.asyncio
    async def test_captain_cannot_remove_self(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="squad")
        alice, bob = await make_user(), await make_user()
        team = await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice, bob))

        with pytest.raises(ValidationError):
            await team_service.remove_player(db_session, alice.id, team["id"], alice.id)

    @pytest.mark.asyncio
    async def test_player_not_on_roster(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="squad")
        alice, bob, mallory = await make_user(), await make_user(), await make_user()
        team = await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice, bob))

        with pytest.raises(NotFound):
            await team_service.remove_player(db_session, alice.id, team["id"], mallory.id)

    @pytest.mark.asyncio
    async def test_removing_duo_partner_disbands(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="duo")
        alice, bob = await make_user(), await make_user()
        team = await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice, bob))

        result = await team_service.remove_player(db_session, alice.id, team["id"], bob.id)

        assert result["disbanded"] is True
        assert await team_row(db_session, team["id"]) is None
        assert await registered_count(db_session, t.id) == 0


class TestTransferCaptaincy:
    """transfer_captaincy behavior."""

    @pytest.mark.asyncio
    async def test_transfer_then_old_captain_can_leave(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="squad")
        alice, bob, carol = await make_user(), await make_user(), await make_user()
        team = await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice, bob, carol))

        result = await team_service.transfer_captaincy(db_session, alice.id, team["id"], bob.id)
        assert result == {"team_id": team["id"], "captain_id": bob.id}
        assert (await team_row(db_session, team["id"])).captain_id == bob.id

        left = await team_service.leave_team(db_session, alice.id, team["id"])
        assert left["disbanded"] is False
        assert await roster_ids(db_session, team["id"]) == [bob.id, carol.id]

    @pytest.mark.asyncio
    async def test_new_captain_must_be_on_roster(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="squad")
        alice, bob, mallory = await make_user(), await make_user(), await make_user()
        team = await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice, bob))

        with pytest.raises(ValidationError):
            await team_service.transfer_captaincy(db_session, alice.id, team["id"], mallory.id)

    @pytest.mark.asyncio
    async def test_only_captain_can_transfer(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="squad")
        alice, bob, carol = await make_user(), await make_user(), await make_user()
        team = await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice, bob, carol))

        with pytest.raises(Forbidden):
            await team_service.transfer_captaincy(db_session, bob.id, team["id"], carol.id)

    @pytest.mark.asyncio
    async def test_transfer_after_registration_closed(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="squad")
        alice, bob = await make_user(), await make_user()
        team = await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice, bob))
        await close_registration(db_session, t.id)

        with pytest.raises(ValidationError):
            await team_service.transfer_captaincy(db_session, alice.id, team["id"], bob.id)


class TestAdminReview:
    """Admin team list, approve/reject and disband."""

    @pytest.mark.asyncio
    async def test_list_newest_first_with_rosters(self, db_session, make_user, make_tournament):
        t = await make_tournament(type="duo")
        alice, bob, carol = await make_user(), await make_user(), await make_user()
        alpha = await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice, bob))
        beta = await team_service.create_team(db_session, t.id, carol.id, "Beta", roster_for(carol))

        teams = await team_service.list_tournament_teams(db_session, t.id)

        assert [team["id"] for team in teams] == [beta["id"], alpha["id"]]
        assert [p["user_id"] for p in teams[1]["players"]] == [alice.id, bob.id]

        with pytest.raises(NotFound):
            await team_service.list_tournament_teams(db_session, 999)

    @pytest.mark.asyncio
    async def test_status_change_is_audited_once(self, db_session, make_user, make_tournament):
        admin = await make_user(role="admin")
        t = await make_tournament(type="solo")
        alice = await make_user()
        team = await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice))

        approved = await team_service.set_team_status(db_session, admin.id, team["id"], "approved")
        await team_service.set_team_status(db_session, admin.id, team["id"], "approved")

        assert approved["status"] == "approved"
        logs = (await audit_service.list_entries(db_session))["logs"]
        assert len(logs) == 1
        assert logs[0]["action"] == "team_status_change"
        assert logs[0]["target_id"] == str(team["id"])
        assert logs[0]["details"] == {"from": "pending", "to": "approved"}

    @pytest.mark.asyncio
    async def test_status_must_be_a_review_outcome(self, db_session, make_user, make_tournament):
        admin = await make_user(role="admin")
        t = await make_tournament(type="solo")
        alice = await make_user()
        team = await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice))

        with pytest.raises(ValidationError):
            await team_service.set_team_status(db_session, admin.id, team["id"], "pending")
        with pytest.raises(NotFound):
            await team_service.set_team_status(db_session, admin.id, 999, "rejected")

    @pytest.mark.asyncio
    async def test_disband_releases_slot_and_invites(self, db_session, make_user, make_tournament):
        admin = await make_user(role="admin")
        t = await make_tournament(type="squad", max_teams=1)
        alice, bob = await make_user(), await make_user()
        team = await team_service.create_team(db_session, t.id, alice.id, "Alpha", roster_for(alice))
        await invite_service.invite_to_team(db_session, alice.id, t.id, "Alpha", bob.id)

        await team_service.disband_team(db_session, admin.id, team["id"])

        assert await team_row(db_session, team["id"]) is None
        assert await registered_count(db_session, t.id) == 0
        invites = await db_session.scalar(select(func.count()).select_from(TeamInvite))
        assert invites == 0
        logs = (await audit_service.list_entries(db_session))["logs"]
        assert [log["action"] for log in logs] == ["team_disband"]

        # The slot is free again
        await team_service.create_team(db_session, t.id, bob.id, "Beta", roster_for(bob))
