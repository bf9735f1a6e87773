"""
Pydantic models for API request/response validation.
"""

from datetime import datetime
from typing import Optional, List, Literal
from pydantic import BaseModel, Field, field_validator


class PlayerEntry(BaseModel):
    """One roster row in a team registration."""

    user_id: Optional[int] = None
    minecraft_ign: str = ""
    discord_username: str = ""


class TeamCreate(BaseModel):
    """Team registration request."""

    team_name: str
    players: List[PlayerEntry] = Field(default_factory=list)
    reward_receiver_ign: Optional[str] = None


class TeamSummary(BaseModel):
    id: int
    name: str
    created_at: Optional[str] = None


class TeamListResponse(BaseModel):
    """Public team list for a tournament."""

    status: str
    teams: List[TeamSummary]


class NameAvailabilityResponse(BaseModel):
    available: bool


class TournamentResponse(BaseModel):
    """Tournament as shown to players and admins."""

    id: int
    name: str
    type: str
    date: str
    start_time: str
    registration_deadline: str
    scheduled_at: Optional[str] = None
    max_teams: int
    team_size: int
    registered_teams: int
    status: str
    is_closed: bool
    description: Optional[str] = None
    prize: Optional[str] = None
    server_ip: Optional[str] = None
    created_at: Optional[str] = None


class TournamentCreate(BaseModel):
    """Admin request to create a tournament."""

    name: str
    type: Literal["solo", "duo", "squad"] = "squad"
    date: str = Field(pattern=r"^\d{4}-\d{2}-\d{2}$")
    start_time: str = Field(pattern=r"^\d{2}:\d{2}$")
    registration_deadline: str
    max_teams: int = Field(ge=1)
    team_size: Optional[int] = None
    scheduled_at: Optional[datetime] = None
    status: Optional[str] = None
    description: Optional[str] = None
    prize: Optional[str] = None
    server_ip: Optional[str] = None


class TournamentUpdate(BaseModel):
    """Partial tournament update (admin)."""

    name: Optional[str] = None
    type: Optional[Literal["solo", "duo", "squad"]] = None
    date: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    start_time: Optional[str] = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    registration_deadline: Optional[str] = None
    max_teams: Optional[int] = None
    team_size: Optional[int] = None
    scheduled_at: Optional[datetime] = None
    status: Optional[str] = None
    is_closed: Optional[bool] = None
    description: Optional[str] = None
    prize: Optional[str] = None
    server_ip: Optional[str] = None


class InviteCreate(BaseModel):
    """Captain invites a user to a team they captain or are forming."""

    tournament_id: int
    team_name: str
    to_user_id: int


class InviteRespond(BaseModel):
    action: Literal["accept", "reject"]


class InviteResponse(BaseModel):
    id: int
    captain_id: int
    captain_name: str
    to_user_id: int
    to_user_name: str
    tournament_id: int
    tournament_name: Optional[str] = None
    team_name: str
    status: str
    team_id: Optional[int] = None  # set once the invitee is on the team
    created_at: Optional[str] = None
    responded_at: Optional[str] = None


class TeamPlayerResponse(BaseModel):
    position: int
    user_id: Optional[int] = None
    minecraft_ign: str
    discord_username: str


class TeamAdminResponse(BaseModel):
    """A team with its roster, as admins review it."""

    id: int
    tournament_id: int
    team_name: str
    captain_id: int
    status: str
    reward_receiver_ign: Optional[str] = None
    player_count: int
    created_at: Optional[str] = None
    players: List[TeamPlayerResponse]


class TeamStatusUpdate(BaseModel):
    status: Literal["approved", "rejected"]


class RosterChangeResponse(BaseModel):
    team_id: int
    disbanded: bool


class CaptainTransfer(BaseModel):
    new_captain_user_id: int


class CaptainTransferResponse(BaseModel):
    team_id: int
    captain_id: int


class UserSearchResult(BaseModel):
    """A player found by the invite search."""

    id: int
    name: str
    image: Optional[str] = None
    email: str
    minecraft_ign: str = ""
    discord_username: str = ""


class UserResponse(BaseModel):
    """User profile."""

    id: int
    email: str
    name: str
    image: Optional[str] = None
    display_name: Optional[str] = None
    minecraft_ign: Optional[str] = None
    discord_username: Optional[str] = None
    role: str
    banned: bool
    created_at: Optional[str] = None


class MeResponse(UserResponse):
    """Profile of the effective user plus impersonation state."""

    impersonating: bool = False
    real_user_id: Optional[int] = None


class ProfileUpdate(BaseModel):
    display_name: Optional[str] = Field(default=None, max_length=50)
    minecraft_ign: Optional[str] = Field(default=None, max_length=32)
    discord_username: Optional[str] = Field(default=None, max_length=64)


class UserRoleUpdate(BaseModel):
    """Super-admin change of a user's role and/or ban flag."""

    role: Optional[Literal["player", "admin", "super_admin"]] = None
    banned: Optional[bool] = None


class ImpersonateRequest(BaseModel):
    user_id: int


class ImpersonateExitRequest(BaseModel):
    user_id: Optional[int] = None


class TokenResponse(BaseModel):
    """Session token issued on sign-in and on impersonation start/exit."""

    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class MaintenanceResponse(BaseModel):
    maintenance_mode: bool


class AnnouncementResponse(BaseModel):
    message: str
    active: bool


class AnnouncementUpdate(BaseModel):
    message: Optional[str] = None
    active: Optional[bool] = None


class TickerResponse(BaseModel):
    enabled: bool
    items: List[str]


class SiteInfoResponse(BaseModel):
    hosted_by_names: List[str]


class SettingsResponse(BaseModel):
    """Full settings row (admin view)."""

    maintenance_mode: bool
    announcement_message: str
    announcement_active: bool
    announcement_updated_at: Optional[str] = None
    announcement_updated_by: Optional[int] = None
    home_ticker_enabled: bool
    home_ticker_items: List[str]
    hosted_by_names: List[str]


class SettingsUpdate(BaseModel):
    maintenance_mode: Optional[bool] = None
    home_ticker_enabled: Optional[bool] = None
    home_ticker_items: Optional[List[str]] = None
    hosted_by_names: Optional[List[str]] = None

    @field_validator("home_ticker_items", "hosted_by_names")
    @classmethod
    def strip_items(cls, v):
        if v is None:
            return v
        return [item.strip() for item in v if item and item.strip()]


class AuditEntryResponse(BaseModel):
    id: int
    actor_id: int
    actor_name: str
    action: str
    target_type: str
    target_id: Optional[str] = None
    details: Optional[dict] = None
    created_at: Optional[str] = None


class AuditLogResponse(BaseModel):
    logs: List[AuditEntryResponse]
    total: int


class GoogleAuthRequest(BaseModel):
    """Google ID token from the sign-in client."""

    id_token: str
