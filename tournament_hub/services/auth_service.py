"""
Session tokens and the role gate.

Sessions are HS256 JWTs carrying the real user's id and, while a super admin
impersonates someone, the impersonated user's id. Every protected operation
goes through ``authorize`` with the role it requires.
"""

import os
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Dict, Any

from jose import JWTError, jwt
from google.oauth2 import id_token
from google.auth.transport import requests as google_requests
from dotenv import load_dotenv

from tournament_hub.database.models import UserRole
from tournament_hub.services.errors import Unauthorized, Forbidden
from tournament_hub.utils.datetime_utils import utcnow

load_dotenv()

logger = logging.getLogger(__name__)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 7)))
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")

ROLE_RANK = {
    UserRole.PLAYER.value: 0,
    UserRole.ADMIN.value: 1,
    UserRole.SUPER_ADMIN.value: 2,
}


@dataclass(frozen=True)
class Principal:
    """Who is calling: the real user plus an optional impersonation target."""

    user_id: int
    role: str
    banned: bool
    acting_as_user_id: Optional[int] = None

    @property
    def effective_user_id(self) -> int:
        """User whose data the request reads and writes."""
        return self.acting_as_user_id if self.acting_as_user_id is not None else self.user_id

    @property
    def is_impersonating(self) -> bool:
        return self.acting_as_user_id is not None


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed session token.

    Args:
        data: Claims to encode (must include user_id)
        expires_delta: Lifetime override

    Returns:
        Encoded JWT string
    """
    to_encode = data.copy()
    expire = utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode["exp"] = expire
    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and validate a session token.

    Returns:
        Claims dict, or None if the token is invalid or expired
    """
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None


def issue_session_token(user_id: int, impersonating_user_id: Optional[int] = None) -> str:
    """Issue a token for a user, optionally acting as another user."""
    claims: Dict[str, Any] = {"user_id": user_id}
    if impersonating_user_id is not None:
        claims["impersonating_user_id"] = impersonating_user_id
    return create_access_token(claims)


def verify_google_id_token(token: str) -> Dict[str, Any]:
    """
    Verify a Google ID token from the sign-in client.

    Returns:
        Google claims (sub, email, name, picture)

    Raises:
        Unauthorized: If the token is invalid, expired or for another client
    """
    if not GOOGLE_CLIENT_ID:
        logger.error("GOOGLE_CLIENT_ID is not configured; Google sign-in is disabled")
        raise Unauthorized("Google sign-in is not configured")
    try:
        idinfo = id_token.verify_oauth2_token(token, google_requests.Request(), GOOGLE_CLIENT_ID)
    except ValueError as e:
        logger.info(f"Rejected Google ID token: {e}")
        raise Unauthorized("Invalid Google token")
    if not idinfo.get("sub") or not idinfo.get("email"):
        raise Unauthorized("Google token is missing the subject or email")
    return idinfo


def build_principal(user: Dict[str, Any], payload: Dict[str, Any]) -> Principal:
    """
    Build the principal for a loaded user and its token claims.

    Impersonation claims only count for super admins; for anyone else they
    are ignored so a stale token cannot act as another user.
    """
    acting_as = payload.get("impersonating_user_id")
    if acting_as is not None and user.get("role") != UserRole.SUPER_ADMIN.value:
        logger.warning(f"Ignoring impersonation claim for non-super-admin user {user['id']}")
        acting_as = None
    if acting_as is not None and acting_as == user["id"]:
        acting_as = None
    return Principal(
        user_id=user["id"],
        role=user.get("role") or UserRole.PLAYER.value,
        banned=bool(user.get("banned")),
        acting_as_user_id=acting_as,
    )


def has_role(role: str, required_role: str) -> bool:
    """True if ``role`` ranks at or above ``required_role``."""
    return ROLE_RANK.get(role, -1) >= ROLE_RANK[required_role]


def authorize(
    principal: Optional[Principal],
    required_role: str = UserRole.PLAYER.value,
    mutating: bool = True,
) -> Principal:
    """
    The single authorization predicate shared by every protected operation.

    Args:
        principal: Resolved caller, or None if there is no valid session
        required_role: Minimum role (player, admin, super_admin)
        mutating: Whether the operation writes; banned users may not write

    Returns:
        The principal, unchanged

    Raises:
        Unauthorized: No session, or a banned user on a mutating operation
        Forbidden: Role below the requirement (checked on the real user's role)
    """
    if principal is None:
        raise Unauthorized("Unauthorized")
    if principal.banned and mutating:
        raise Unauthorized("Account is banned")
    if not has_role(principal.role, required_role):
        raise Forbidden("Forbidden")
    return principal
