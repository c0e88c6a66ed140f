"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract
and validate the current identity from the Authorization header.
Failures raise AuthError/ForbiddenError; main.py turns those into
401/403 with the standard `{"error": ...}` body.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header

from ticketrelay.auth.jwt import TokenError, verify_token
from ticketrelay.config import settings
from ticketrelay.db.models import UserRole
from ticketrelay.errors import AuthError, ForbiddenError


@dataclass(frozen=True)
class CurrentIdentity:
    """The authenticated caller, as asserted by a verified token."""

    user_id: int
    username: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


def identity_from_token(token: str) -> CurrentIdentity:
    """Verify a raw bearer token. Shared by HTTP routes and the WebSocket."""
    try:
        payload = verify_token(token)
        return CurrentIdentity(
            user_id=int(payload["sub"]),
            username=payload.get("username", ""),
            role=payload.get("role", UserRole.CUSTOMER.value),
        )
    except (TokenError, ValueError) as e:
        raise AuthError(str(e))


async def get_current_user_optional(
    authorization: Optional[str] = Header(None),
) -> Optional[CurrentIdentity]:
    """Soft auth — None when no bearer token is sent, 401 when a bad one is."""
    if not authorization:
        return None
    if not authorization.startswith("Bearer "):
        raise AuthError("Authorization header must be 'Bearer <token>'")
    return identity_from_token(authorization[7:])


async def get_current_user(
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
) -> CurrentIdentity:
    """Hard auth — 401 if no token."""
    if not identity:
        raise AuthError("Authentication required")
    return identity


async def status_update_policy(
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
) -> Optional[CurrentIdentity]:
    """Who may change a ticket's status.

    Learn: Status changes have historically been open to anyone. Setting
    TICKETRELAY_REQUIRE_ADMIN_FOR_STATUS_UPDATE=true closes that: the
    caller must then present a token with the admin role.
    """
    if not settings.require_admin_for_status_update:
        return identity
    if identity is None:
        raise AuthError("Authentication required")
    if not identity.is_admin:
        raise ForbiddenError("Admin role required to change ticket status")
    return identity
