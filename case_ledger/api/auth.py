"""Authentication API routes.

Login exchanges a username and password for a signed access token. Failed
attempts are counted per username and client address by the ``LoginThrottle``
kept on ``app.state``.
"""

import logging

from fastapi import APIRouter, HTTPException, Request, status

from ..core import CurrentUserDep, SessionDep, ThrottleDep
from ..core.security import create_access_token
from ..schemas import ActorProfile, LoginRequest, TokenResponse
from ..services import Actor, StaffService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


def _throttle_key(username: str, request: Request) -> str:
    client = request.client.host if request.client else "unknown"
    return f"{username.strip().lower()}|{client}"


@router.post("/login", response_model=TokenResponse)
async def login(
    data: LoginRequest,
    request: Request,
    session: SessionDep,
    throttle: ThrottleDep,
):
    """Login with username and password."""
    key = _throttle_key(data.username, request)
    if await throttle.is_blocked(key):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts. Try again later.",
        )

    user = await StaffService(session).authenticate(data.username, data.password)
    if user is None:
        attempts = await throttle.register_failure(key)
        logger.info(f"Failed login for {data.username!r} (attempt {attempts})")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    await throttle.reset(key)
    token = create_access_token(username=user.username, role=user.role.value)
    logger.info(f"User {user.username} logged in")

    return TokenResponse(
        access_token=token,
        username=user.username,
        role=user.role,
        staff_name=Actor.from_staff_user(user).staff_name or None,
    )


@router.get("/me", response_model=ActorProfile)
async def get_me(current_user: CurrentUserDep):
    """The caller's identity as the scope rules see it."""
    actor = current_user.actor
    return ActorProfile(
        username=actor.username,
        role=actor.role,
        staff_name=actor.staff_name or None,
        managed_names=list(actor.managed_names),
    )
