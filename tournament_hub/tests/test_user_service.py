"""
Tests for user management, player search and the audit log.
"""

import pytest
from types import SimpleNamespace

from tournament_hub.database import db
from tournament_hub.services import user_service, audit_service
from tournament_hub.services.errors import NotFound, ValidationError


class TestAccounts:
    """Sign-in accounts and profiles."""

    @pytest.mark.asyncio
    async def test_first_sign_in_creates_player(self, db_session):
        user = await user_service.get_or_create_user(
            db_session, "google-abc", " Steve@Example.com ", "Steve"
        )

        assert user["role"] == "player"
        assert user["banned"] is False
        assert user["email"] == "steve@example.com"

        again = await user_service.get_or_create_user(
            db_session, "google-abc", "steve@example.com", "Steve B", image="https://img/steve.png"
        )
        assert again["id"] == user["id"]
        assert again["name"] == "Steve B"
        assert again["image"] == "https://img/steve.png"

    @pytest.mark.asyncio
    async def test_update_profile(self, db_session, make_user):
        user = await make_user()

        updated = await user_service.update_profile(
            db_session, user.id, minecraft_ign="  Notch ", discord_username="notch"
        )

        assert updated["minecraft_ign"] == "Notch"
        assert updated["discord_username"] == "notch"

    @pytest.mark.asyncio
    async def test_update_profile_requires_fields(self, db_session, make_user):
        user = await make_user()
        with pytest.raises(ValidationError):
            await user_service.update_profile(db_session, user.id)

    @pytest.mark.asyncio
    async def test_update_profile_unknown_user(self, db_session):
        with pytest.raises(NotFound):
            await user_service.update_profile(db_session, 999, display_name="Ghost")

    def test_display_name_fallbacks(self):
        assert user_service.display_name_for(None) == "This player"
        assert user_service.display_name_for(SimpleNamespace(display_name="  ", name="Steve", email="s@x")) == "Steve"
        assert user_service.display_name_for(SimpleNamespace(display_name="Stevie", name="Steve", email="s@x")) == "Stevie"


class TestUserSearch:
    """search_users for the invite picker."""

    @pytest.mark.asyncio
    async def test_matches_names_and_handles(self, db_session, make_user):
        caller = await make_user(name="Stella")
        steve = await make_user(name="Steve", minecraft_ign="Steve_Builder")
        alex = await make_user(name="Alex", display_name="stevie")
        await make_user(name="Zed")

        results = await user_service.search_users(db_session, caller.id, "STE")

        assert [r["id"] for r in results] == [alex.id, steve.id]
        assert results[0]["name"] == "stevie"
        assert results[1]["minecraft_ign"] == "Steve_Builder"
        assert results[1]["email"] == steve.email

    @pytest.mark.asyncio
    async def test_short_query_returns_nothing(self, db_session, make_user):
        caller = await make_user()
        await make_user(name="Steve")

        assert await user_service.search_users(db_session, caller.id, " s ") == []

    @pytest.mark.asyncio
    async def test_like_wildcards_match_literally(self, db_session, make_user):
        caller = await make_user()
        literal = await make_user(minecraft_ign="Steve_Builder")
        await make_user(minecraft_ign="SteveBuilder")

        results = await user_service.search_users(db_session, caller.id, "_b")

        assert [r["id"] for r in results] == [literal.id]

    @pytest.mark.asyncio
    async def test_results_are_capped(self, db_session, make_user, monkeypatch):
        caller = await make_user()
        for _ in range(3):
            await make_user(discord_username="builder")
        monkeypatch.setattr(user_service, "SEARCH_LIMIT", 2)

        assert len(await user_service.search_users(db_session, caller.id, "builder")) == 2


class TestRoleAndBan:
    """Super-admin user changes."""

    @pytest.mark.asyncio
    async def test_promote_and_ban_are_audited(self, db_session, make_user):
        root = await make_user(role="super_admin")
        target = await make_user()

        promoted = await user_service.update_user_role_or_ban(db_session, root.id, target.id, role="admin")
        banned = await user_service.update_user_role_or_ban(db_session, root.id, target.id, banned=True)

        assert promoted["role"] == "admin"
        assert banned["banned"] is True

        page = await audit_service.list_entries(db_session)
        assert page["total"] == 2
        assert [log["action"] for log in page["logs"]] == ["ban", "role_change"]
        assert page["logs"][1]["details"] == {"from": "player", "to": "admin"}
        assert page["logs"][0]["actor_name"] == root.name
        assert page["logs"][0]["target_id"] == str(target.id)

    @pytest.mark.asyncio
    async def test_unchanged_value_not_audited(self, db_session, make_user):
        root = await make_user(role="super_admin")
        target = await make_user()

        await user_service.update_user_role_or_ban(db_session, root.id, target.id, role="player")

        assert (await audit_service.list_entries(db_session))["total"] == 0

    @pytest.mark.asyncio
    async def test_cannot_target_self(self, db_session, make_user):
        root = await make_user(role="super_admin")
        with pytest.raises(ValidationError):
            await user_service.update_user_role_or_ban(db_session, root.id, root.id, banned=True)

    @pytest.mark.asyncio
    async def test_unknown_role_and_empty_change(self, db_session, make_user):
        root = await make_user(role="super_admin")
        target = await make_user()
        with pytest.raises(ValidationError):
            await user_service.update_user_role_or_ban(db_session, root.id, target.id, role="owner")
        with pytest.raises(ValidationError):
            await user_service.update_user_role_or_ban(db_session, root.id, target.id)

    @pytest.mark.asyncio
    async def test_unknown_target(self, db_session, make_user):
        root = await make_user(role="super_admin")
        with pytest.raises(NotFound):
            await user_service.update_user_role_or_ban(db_session, root.id, 999, banned=True)


class TestImpersonation:
    """Impersonation start/end records."""

    @pytest.mark.asyncio
    async def test_start_and_end_are_audited(self, db_session, make_user):
        root = await make_user(role="super_admin")
        target = await make_user(display_name="Target")

        started = await user_service.start_impersonation(db_session, root.id, target.id)
        await user_service.end_impersonation(db_session, root.id, target.id)

        assert started["id"] == target.id
        logs = (await audit_service.list_entries(db_session))["logs"]
        assert [log["action"] for log in logs] == ["impersonation_end", "impersonation_start"]
        assert logs[1]["details"]["target_name"] == "Target"

    @pytest.mark.asyncio
    async def test_cannot_impersonate_self_or_unknown(self, db_session, make_user):
        root = await make_user(role="super_admin")
        with pytest.raises(ValidationError):
            await user_service.start_impersonation(db_session, root.id, root.id)
        with pytest.raises(NotFound):
            await user_service.start_impersonation(db_session, root.id, 999)

    @pytest.mark.asyncio
    async def test_end_for_unknown_user_is_not_audited(self, db_session, make_user):
        root = await make_user(role="super_admin")

        await user_service.end_impersonation(db_session, root.id, 999)
        await user_service.end_impersonation(db_session, root.id, None)

        assert (await audit_service.list_entries(db_session))["total"] == 0


class TestAuditLog:
    """Audit sink behavior."""

    @pytest.mark.asyncio
    async def test_record_failure_is_swallowed(self, monkeypatch):
        def broken_factory():
            raise RuntimeError("audit store down")

        monkeypatch.setattr(db, "get_session_factory", broken_factory)

        assert await audit_service.record(1, "ban", "user", target_id="2") is False

    @pytest.mark.asyncio
    async def test_paging_and_limit_clamp(self, db_session, make_user):
        root = await make_user(role="super_admin")
        for i in range(5):
            assert await audit_service.record(root.id, "setting_change", "settings", target_id=f"key{i}")

        first = await audit_service.list_entries(db_session, limit=2)
        second = await audit_service.list_entries(db_session, limit=2, skip=2)
        clamped = await audit_service.list_entries(db_session, limit=0)

        assert first["total"] == 5
        assert [log["target_id"] for log in first["logs"]] == ["key4", "key3"]
        assert [log["target_id"] for log in second["logs"]] == ["key2", "key1"]
        assert len(clamped["logs"]) == 1
