"""FastAPI dependencies for authentication, authorization, and request context."""

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Role, StaffUser
from ..services.mailer import Mailer, get_mailer
from ..services.scope import Actor, ScopeResolver
from .database import get_session
from .security import decode_token
from .throttle import LoginThrottle

logger = logging.getLogger(__name__)

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser:
    """The authenticated staff member and the scope derived from their role."""

    def __init__(self, user: StaffUser):
        self.user = user
        self.actor = Actor.from_staff_user(user)
        self.scope = ScopeResolver(self.actor)

    @property
    def username(self) -> str:
        return self.user.username

    @property
    def role(self) -> Role:
        return self.user.role

    @property
    def is_admin(self) -> bool:
        return self.actor.is_admin


async def get_current_user(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CurrentUser:
    """Dependency to get the current authenticated user.

    Validates the access token and loads the staff row; inactive or unknown
    users are rejected.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if payload.type != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )

    user = await session.get(StaffUser, payload.sub)
    if not user or not user.is_active:
        logger.warning(f"Token presented for unknown or inactive user {payload.sub}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    return CurrentUser(user)


def require_admin(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
) -> CurrentUser:
    """Require the admin role."""
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return current_user


def get_login_throttle(request: Request) -> LoginThrottle:
    """Throttle constructed at startup and kept on ``app.state``."""
    return request.app.state.login_throttle


# Type aliases for cleaner dependency injection
CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
AdminDep = Annotated[CurrentUser, Depends(require_admin)]
SessionDep = Annotated[AsyncSession, Depends(get_session)]
ThrottleDep = Annotated[LoginThrottle, Depends(get_login_throttle)]
MailerDep = Annotated[Mailer, Depends(get_mailer)]
