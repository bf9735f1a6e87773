"""
Domain errors raised by the service layer.

Services raise these; route handlers turn them into HTTP responses with
``raise_http``. They subclass ValueError so callers that only care about
"bad request vs. crash" can keep catching ValueError.
"""

from typing import NoReturn

from fastapi import HTTPException


class ServiceError(ValueError):
    """Base class for expected, user-facing failures."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthorized(ServiceError):
    """No valid session (or a banned user attempting a mutation)."""

    status_code = 401


class Forbidden(ServiceError):
    """Authenticated, but the role or ownership does not allow the action."""

    status_code = 403


class NotFound(ServiceError):
    """Missing resource, or one the caller must not learn exists."""

    status_code = 404


class ValidationError(ServiceError):
    """Malformed input: bad id, oversized team, blank name."""

    status_code = 400


class Conflict(ServiceError):
    """Duplicate team name, duplicate invite, already-resolved invite."""

    status_code = 409


class CapacityExceeded(ServiceError):
    """No registration slot (or team seat) left."""

    status_code = 409


class StoreUnavailable(ServiceError):
    """The underlying store failed."""

    status_code = 500


def raise_http(exc: ServiceError) -> NoReturn:
    """Translate a service error into the matching HTTPException."""
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    raise HTTPException(status_code=exc.status_code, detail=exc.message, headers=headers) from exc


def parse_id(value: str, label: str = "ID") -> int:
    """
    Parse a path/body identifier.

    Args:
        value: Raw identifier (usually a path segment)
        label: Used in the error message, e.g. "tournament ID"

    Returns:
        Positive integer id

    Raises:
        ValidationError: If the value is not a positive integer
    """
    text = str(value).strip() if value is not None else ""
    if not (text.isascii() and text.isdigit()) or int(text) <= 0:
        raise ValidationError(f"Invalid {label}")
    return int(text)
