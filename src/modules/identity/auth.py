"""JWT authentication dependency for FastAPI.

Validates Bearer tokens from the Authorization header and turns the claims
(``sub``, ``role``, ``name``) into the acting user. Token issuance lives
outside this service.
"""

import logging
import uuid
from dataclasses import dataclass

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from src.config import settings
from src.exceptions import ForbiddenException, UnauthorizedException
from src.models.enums import ActorRole

logger = logging.getLogger(__name__)

# FastAPI security scheme: extracts Bearer token from Authorization header
_bearer_scheme = HTTPBearer(auto_error=False)

SYSTEM_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000000")


@dataclass(frozen=True)
class AuthenticatedUser:
    """The caller of a lifecycle operation: a person or the scheduler."""

    id: uuid.UUID
    role: ActorRole
    name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role in (ActorRole.ADMIN, ActorRole.SYSTEM)

    def require(self, *roles: ActorRole) -> None:
        """Raise ForbiddenException unless the user holds one of ``roles`` or is an admin."""
        if self.role not in roles and not self.is_admin:
            allowed = ", ".join(r.value for r in roles)
            raise ForbiddenException(f"This action requires one of: {allowed}")


SYSTEM_ACTOR = AuthenticatedUser(id=SYSTEM_USER_ID, role=ActorRole.SYSTEM, name="auto-approval")


def _decode_token(token: str) -> dict:
    """Decode and validate a JWT token. Raises UnauthorizedException on failure."""
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as exc:
        logger.warning("JWT validation failed: %s", exc)
        raise UnauthorizedException("Invalid or expired token") from exc


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthenticatedUser:
    """FastAPI dependency that extracts and validates the current user from JWT."""
    if credentials is None:
        raise UnauthorizedException("Authentication required")

    payload = _decode_token(credentials.credentials)

    try:
        user = AuthenticatedUser(
            id=uuid.UUID(payload["sub"]),
            role=ActorRole(payload.get("role", ActorRole.CUSTOMER.value)),
            name=payload.get("name"),
        )
    except (KeyError, ValueError) as exc:
        raise UnauthorizedException("Token is missing required claims") from exc

    if user.role is ActorRole.SYSTEM:
        raise UnauthorizedException("System tokens are not accepted over HTTP")

    request.state.user = user
    return user
