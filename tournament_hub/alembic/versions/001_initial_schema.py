"""initial_schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

Users, tournaments, teams with their rosters, team invites, the site
settings row and the audit log.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("external_auth_id", sa.String(), nullable=False, unique=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("image", sa.String(), nullable=True),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("minecraft_ign", sa.String(), nullable=True),
        sa.Column("discord_username", sa.String(), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="player"),
        sa.Column("banned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("role IN ('player', 'admin', 'super_admin')", name="ck_users_role"),
    )
    op.create_index("idx_users_email", "users", ["email"])

    op.create_table(
        "tournaments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("type", sa.String(10), nullable=False, server_default="squad"),
        sa.Column("date", sa.String(10), nullable=False),
        sa.Column("start_time", sa.String(5), nullable=False),
        sa.Column("registration_deadline", sa.String(), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("max_teams", sa.Integer(), nullable=False),
        sa.Column("team_size", sa.Integer(), nullable=False),
        sa.Column("registered_teams", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(30), nullable=False, server_default="draft"),
        sa.Column("is_closed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("prize", sa.String(), nullable=True),
        sa.Column("server_ip", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("registered_teams <= max_teams", name="ck_tournaments_capacity"),
        sa.CheckConstraint("registered_teams >= 0", name="ck_tournaments_registered_non_negative"),
    )
    op.create_index("idx_tournaments_date", "tournaments", ["date"])
    op.create_index("idx_tournaments_status", "tournaments", ["status"])

    op.create_table(
        "teams",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tournament_id", sa.Integer(), sa.ForeignKey("tournaments.id"), nullable=False),
        sa.Column("team_name", sa.String(), nullable=False),
        sa.Column("captain_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("reward_receiver_ign", sa.String(), nullable=True),
        sa.Column("player_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("tournament_id", "team_name", name="uq_teams_tournament_name"),
    )
    op.create_index("idx_teams_tournament_id", "teams", ["tournament_id"])
    op.create_index("idx_teams_captain_id", "teams", ["captain_id"])

    op.create_table(
        "team_players",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("team_id", sa.Integer(), sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("minecraft_ign", sa.String(), nullable=False, server_default=""),
        sa.Column("discord_username", sa.String(), nullable=False, server_default=""),
    )
    op.create_index("idx_team_players_team_id", "team_players", ["team_id"])
    op.create_index("idx_team_players_user_id", "team_players", ["user_id"])

    op.create_table(
        "team_invites",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("captain_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("to_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("tournament_id", sa.Integer(), sa.ForeignKey("tournaments.id"), nullable=False),
        sa.Column("team_name", sa.String(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "captain_id", "tournament_id", "team_name", "to_user_id", name="uq_team_invites_tuple"
        ),
    )
    op.create_index("idx_team_invites_to_user_status", "team_invites", ["to_user_id", "status"])

    op.create_table(
        "site_settings",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("maintenance_mode", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("announcement_message", sa.Text(), nullable=False, server_default=""),
        sa.Column("announcement_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("announcement_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("announcement_updated_by", sa.Integer(), nullable=True),
        sa.Column("home_ticker_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("home_ticker_items", sa.JSON(), nullable=False),
        sa.Column("hosted_by_names", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(40), nullable=False),
        sa.Column("target_type", sa.String(20), nullable=False),
        sa.Column("target_id", sa.String(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_audit_logs_created_at", "audit_logs", ["created_at"])
    op.create_index("idx_audit_logs_actor_created", "audit_logs", ["actor_id", "created_at"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("audit_logs")
    op.drop_table("site_settings")
    op.drop_index("idx_team_invites_to_user_status", table_name="team_invites")
    op.drop_table("team_invites")
    op.drop_table("team_players")
    op.drop_table("teams")
    op.drop_table("tournaments")
    op.drop_table("users")
