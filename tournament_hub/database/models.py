"""
SQLAlchemy ORM models for the tournament registration system.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
    JSON,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from tournament_hub.database.db import Base


class UserRole(str, enum.Enum):
    """User role enum, ordered from least to most privileged."""

    PLAYER = "player"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class TournamentType(str, enum.Enum):
    """Tournament format."""

    SOLO = "solo"
    DUO = "duo"
    SQUAD = "squad"


TOURNAMENT_TYPE_TEAM_SIZE = {
    TournamentType.SOLO.value: 1,
    TournamentType.DUO.value: 2,
    TournamentType.SQUAD.value: 4,
}


class TournamentStatus(str, enum.Enum):
    """Tournament lifecycle status, in lifecycle order."""

    DRAFT = "draft"
    SCHEDULED = "scheduled"
    REGISTRATION_OPEN = "registration_open"
    REGISTRATION_CLOSED = "registration_closed"
    ONGOING = "ongoing"
    COMPLETED = "completed"


class TeamStatus(str, enum.Enum):
    """Team review status."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class InviteStatus(str, enum.Enum):
    """Team invite status enum."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class AuditAction(str, enum.Enum):
    """Administrative actions recorded in the audit log."""

    ROLE_CHANGE = "role_change"
    BAN = "ban"
    UNBAN = "unban"
    IMPERSONATION_START = "impersonation_start"
    IMPERSONATION_END = "impersonation_end"
    SETTING_CHANGE = "setting_change"
    ANNOUNCEMENT_SET = "announcement_set"
    ANNOUNCEMENT_CLEAR = "announcement_clear"
    TOURNAMENT_CREATE = "tournament_create"
    TOURNAMENT_UPDATE = "tournament_update"
    TEAM_STATUS_CHANGE = "team_status_change"
    TEAM_DISBAND = "team_disband"


class AuditTargetType(str, enum.Enum):
    """Kinds of objects an audit entry can point at."""

    USER = "user"
    SETTINGS = "settings"
    ANNOUNCEMENT = "announcement"
    TOURNAMENT = "tournament"
    TEAM = "team"


SITE_SETTINGS_ID = "global"


class User(Base):
    """Accounts created on first sign-in through the external auth provider."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_auth_id = Column(String, nullable=False, unique=True)  # provider subject (e.g. Google "sub")
    email = Column(String, nullable=False)
    name = Column(String, nullable=False)
    image = Column(String, nullable=True)
    display_name = Column(String, nullable=True)  # chosen on the platform, not from the provider
    minecraft_ign = Column(String, nullable=True)
    discord_username = Column(String, nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.PLAYER.value)
    banned = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_users_email", "email"),
        CheckConstraint("role IN ('player', 'admin', 'super_admin')", name="ck_users_role"),
    )


class Tournament(Base):
    """A tournament and its registration slot counter."""

    __tablename__ = "tournaments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    type = Column(String(10), nullable=False, default=TournamentType.SQUAD.value)
    date = Column(String(10), nullable=False)  # YYYY-MM-DD
    start_time = Column(String(5), nullable=False)  # HH:MM
    registration_deadline = Column(String, nullable=False)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)  # registration opens at this instant
    max_teams = Column(Integer, nullable=False)
    team_size = Column(Integer, nullable=False)
    registered_teams = Column(Integer, nullable=False, default=0)
    status = Column(String(30), nullable=False, default=TournamentStatus.DRAFT.value)
    is_closed = Column(Boolean, nullable=False, default=False)
    description = Column(Text, nullable=True)
    prize = Column(String, nullable=True)
    server_ip = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    teams = relationship("Team", back_populates="tournament")

    __table_args__ = (
        CheckConstraint("registered_teams <= max_teams", name="ck_tournaments_capacity"),
        CheckConstraint("registered_teams >= 0", name="ck_tournaments_registered_non_negative"),
        Index("idx_tournaments_date", "date"),
        Index("idx_tournaments_status", "status"),
    )


class Team(Base):
    """A team registered by its captain for one tournament."""

    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False)
    team_name = Column(String, nullable=False)
    captain_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(String(20), nullable=False, default=TeamStatus.PENDING.value)
    reward_receiver_ign = Column(String, nullable=True)
    player_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    tournament = relationship("Tournament", back_populates="teams")
    captain = relationship("User", foreign_keys=[captain_id])
    players = relationship(
        "TeamPlayer",
        back_populates="team",
        cascade="all, delete-orphan",
        order_by="TeamPlayer.position",
    )

    __table_args__ = (
        UniqueConstraint("tournament_id", "team_name", name="uq_teams_tournament_name"),
        Index("idx_teams_tournament_id", "tournament_id"),
        Index("idx_teams_captain_id", "captain_id"),
    )


class TeamPlayer(Base):
    """
    A roster entry owned by a team.

    tournament_id is copied from the team so the database can enforce one
    team per user and tournament.
    """

    __tablename__ = "team_players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False)
    position = Column(Integer, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    minecraft_ign = Column(String, nullable=False, default="")
    discord_username = Column(String, nullable=False, default="")

    team = relationship("Team", back_populates="players")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("tournament_id", "user_id", name="uq_team_players_tournament_user"),
        Index("idx_team_players_team_id", "team_id"),
        Index("idx_team_players_user_id", "user_id"),
    )


class TeamInvite(Base):
    """Captain-issued invitation for a user to join a team."""

    __tablename__ = "team_invites"

    id = Column(Integer, primary_key=True, autoincrement=True)
    captain_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    to_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False)
    team_name = Column(String, nullable=False)
    status = Column(String(20), nullable=False, default=InviteStatus.PENDING.value)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    responded_at = Column(DateTime(timezone=True), nullable=True)

    captain = relationship("User", foreign_keys=[captain_id])
    to_user = relationship("User", foreign_keys=[to_user_id])
    tournament = relationship("Tournament")

    __table_args__ = (
        UniqueConstraint(
            "captain_id", "tournament_id", "team_name", "to_user_id", name="uq_team_invites_tuple"
        ),
        Index("idx_team_invites_to_user_status", "to_user_id", "status"),
    )


class SiteSettings(Base):
    """Singleton row with site-wide settings (id is always SITE_SETTINGS_ID)."""

    __tablename__ = "site_settings"

    id = Column(String, primary_key=True, default=SITE_SETTINGS_ID)
    maintenance_mode = Column(Boolean, nullable=False, default=False)
    announcement_message = Column(Text, nullable=False, default="")
    announcement_active = Column(Boolean, nullable=False, default=False)
    announcement_updated_at = Column(DateTime(timezone=True), nullable=True)
    announcement_updated_by = Column(Integer, nullable=True)
    home_ticker_enabled = Column(Boolean, nullable=False, default=False)
    home_ticker_items = Column(JSON, nullable=False, default=list)
    hosted_by_names = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class AuditLog(Base):
    """Append-only record of administrative actions."""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_id = Column(Integer, nullable=False)  # real actor, even while impersonating
    action = Column(String(40), nullable=False)
    target_type = Column(String(20), nullable=False)
    target_id = Column(String, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_audit_logs_created_at", "created_at"),
        Index("idx_audit_logs_actor_created", "actor_id", "created_at"),
    )
