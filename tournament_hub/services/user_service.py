"""
User service layer: accounts, profiles and super-admin user management.
"""

from typing import Optional, Dict, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, or_
from tournament_hub.database.models import User, UserRole, AuditAction, AuditTargetType
from tournament_hub.services import audit_service
from tournament_hub.services.errors import NotFound, ValidationError
from tournament_hub.utils.datetime_utils import isoformat_or_none
import logging

logger = logging.getLogger(__name__)

ROLES = [r.value for r in UserRole]
SEARCH_MIN_LENGTH = 2
SEARCH_LIMIT = 20


def user_to_dict(user: User) -> Dict:
    """Serialize a user row."""
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "image": user.image,
        "display_name": user.display_name,
        "minecraft_ign": user.minecraft_ign,
        "discord_username": user.discord_username,
        "role": user.role,
        "banned": user.banned is True,
        "created_at": isoformat_or_none(user.created_at),
    }


def display_name_for(user: Optional[User]) -> str:
    """Name shown for a user in lists and messages."""
    if user is None:
        return "This player"
    return (user.display_name or "").strip() or user.name or user.email or "This player"


async def get_user_by_id(session: AsyncSession, user_id: int) -> Optional[Dict]:
    """
    Get a user by ID.

    Args:
        session: Database session
        user_id: User ID

    Returns:
        User dictionary or None if not found
    """
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    return user_to_dict(user) if user else None


async def get_or_create_user(
    session: AsyncSession,
    external_auth_id: str,
    email: str,
    name: str,
    image: Optional[str] = None,
) -> Dict:
    """
    Return the account for an external identity, creating it on first sign-in.

    New accounts start as players and unbanned. Existing accounts get their
    provider email, name and image refreshed.
    """
    if not external_auth_id:
        raise ValidationError("external_auth_id is required")

    result = await session.execute(select(User).where(User.external_auth_id == external_auth_id))
    user = result.scalar_one_or_none()
    if user is None:
        user = User(
            external_auth_id=external_auth_id,
            email=email.strip().lower(),
            name=name.strip(),
            image=image,
            role=UserRole.PLAYER.value,
            banned=False,
        )
        session.add(user)
        await session.flush()
        await session.refresh(user)
        logger.info(f"Created user {user.id} on first sign-in")
    else:
        user.email = email.strip().lower()
        user.name = name.strip()
        user.image = image
        await session.flush()
    await session.commit()
    return user_to_dict(user)


async def update_profile(
    session: AsyncSession,
    user_id: int,
    display_name: Optional[str] = None,
    minecraft_ign: Optional[str] = None,
    discord_username: Optional[str] = None,
) -> Dict:
    """
    Update the caller's platform profile (onboarding fields).

    Raises:
        ValidationError: If no fields were provided
        NotFound: If the user does not exist
    """
    values = {}
    if display_name is not None:
        values["display_name"] = display_name.strip()
    if minecraft_ign is not None:
        values["minecraft_ign"] = minecraft_ign.strip()
    if discord_username is not None:
        values["discord_username"] = discord_username.strip()
    if not values:
        raise ValidationError("No fields provided to update")

    result = await session.execute(update(User).where(User.id == user_id).values(**values))
    if result.rowcount == 0:
        raise NotFound("User not found")
    await session.commit()

    updated = await get_user_by_id(session, user_id)
    if updated is None:
        raise NotFound("User not found")
    return updated


async def list_users(session: AsyncSession) -> List[Dict]:
    """All users, newest first (super-admin user table)."""
    result = await session.execute(select(User).order_by(User.created_at.desc(), User.id.desc()))
    return [user_to_dict(u) for u in result.scalars().all()]


async def update_user_role_or_ban(
    session: AsyncSession,
    actor_id: int,
    target_user_id: int,
    role: Optional[str] = None,
    banned: Optional[bool] = None,
) -> Dict:
    """
    Change a user's role and/or ban flag.

    Takes effect on the target's next request; in-flight requests keep the
    role they were authorized with.

    Raises:
        ValidationError: Self-targeting, unknown role, or nothing to change
        NotFound: Target user does not exist
    """
    if target_user_id == actor_id:
        raise ValidationError("You cannot change your own role or ban yourself")
    if role is not None and role not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}")
    if role is None and banned is None:
        raise ValidationError("Provide at least one of: role, banned")

    result = await session.execute(select(User).where(User.id == target_user_id))
    target = result.scalar_one_or_none()
    if target is None:
        raise NotFound("User not found")

    previous_role = target.role
    previous_banned = target.banned is True

    values = {}
    if role is not None:
        values["role"] = role
    if banned is not None:
        values["banned"] = banned
    await session.execute(update(User).where(User.id == target_user_id).values(**values))
    await session.commit()

    if role is not None and role != previous_role:
        await audit_service.record(
            actor_id,
            AuditAction.ROLE_CHANGE.value,
            AuditTargetType.USER.value,
            target_id=str(target_user_id),
            details={"from": previous_role, "to": role},
        )
    if banned is not None and banned != previous_banned:
        await audit_service.record(
            actor_id,
            AuditAction.BAN.value if banned else AuditAction.UNBAN.value,
            AuditTargetType.USER.value,
            target_id=str(target_user_id),
        )

    updated = await get_user_by_id(session, target_user_id)
    return updated


async def start_impersonation(session: AsyncSession, actor_id: int, target_user_id: int) -> Dict:
    """
    Validate an impersonation target and record the start.

    Returns:
        The target user dict

    Raises:
        ValidationError: Impersonating oneself
        NotFound: Target user does not exist
    """
    if target_user_id == actor_id:
        raise ValidationError("Cannot impersonate yourself")
    target = await get_user_by_id(session, target_user_id)
    if target is None:
        raise NotFound("User not found")
    # Audit entries are written in their own session
    await session.commit()
    await audit_service.record(
        actor_id,
        AuditAction.IMPERSONATION_START.value,
        AuditTargetType.USER.value,
        target_id=str(target_user_id),
        details={
            "target_email": target["email"],
            "target_name": target["display_name"] or target["name"],
        },
    )
    return target


async def end_impersonation(session: AsyncSession, actor_id: int, impersonated_user_id: Optional[int]) -> None:
    """Record the end of an impersonation session if the id names a real user."""
    if impersonated_user_id is None:
        return
    target = await get_user_by_id(session, impersonated_user_id)
    await session.commit()
    if target is None:
        logger.warning(f"Impersonation exit for unknown user {impersonated_user_id} by {actor_id}")
        return
    await audit_service.record(
        actor_id,
        AuditAction.IMPERSONATION_END.value,
        AuditTargetType.USER.value,
        target_id=str(impersonated_user_id),
    )


def _escape_like(value: str) -> str:
    """Escape LIKE-special characters (%, _) so they match literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


async def search_users(session: AsyncSession, user_id: int, query: str) -> List[Dict]:
    """
    Find players to invite by any of their names or handles.

    Matches name, display name, email, Minecraft IGN and Discord username
    case-insensitively. The caller is never in the results.

    Returns:
        Up to SEARCH_LIMIT matches; empty when the query is shorter than
        SEARCH_MIN_LENGTH
    """
    query = (query or "").strip()
    if len(query) < SEARCH_MIN_LENGTH:
        return []

    pattern = f"%{_escape_like(query)}%"
    result = await session.execute(
        select(User)
        .where(
            User.id != user_id,
            or_(
                User.name.ilike(pattern, escape="\\"),
                User.display_name.ilike(pattern, escape="\\"),
                User.email.ilike(pattern, escape="\\"),
                User.minecraft_ign.ilike(pattern, escape="\\"),
                User.discord_username.ilike(pattern, escape="\\"),
            ),
        )
        .order_by(User.name.asc(), User.id.asc())
        .limit(SEARCH_LIMIT)
    )
    return [
        {
            "id": u.id,
            "name": display_name_for(u),
            "image": u.image,
            "email": u.email,
            "minecraft_ign": u.minecraft_ign or "",
            "discord_username": u.discord_username or "",
        }
        for u in result.scalars().all()
    ]
