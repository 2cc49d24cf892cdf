"""Staff directory: login accounts and assignable names."""

import logging
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.security import hash_password, verify_password
from ..models import Role, StaffUser, utcnow
from .audit import AuditService
from .errors import InvalidInputError, PermissionDeniedError, RecordNotFoundError
from .scope import CLIENT_LAWYERS, INTAKE_LAWYERS, Actor, normalize_staff_name

logger = logging.getLogger(__name__)


class StaffService:
    def __init__(self, session: AsyncSession):
        self._session = session
        self._audit = AuditService(session)

    async def authenticate(self, username: str, password: str) -> StaffUser | None:
        """Return the active user for valid credentials, else None."""
        user = await self._session.get(StaffUser, username.strip().lower())
        if user is None or not user.is_active:
            return None
        if not verify_password(password, user.password_hash):
            return None
        return user

    async def get_user(self, username: str) -> StaffUser | None:
        return await self._session.get(StaffUser, username)

    async def list_users(self) -> Sequence[StaffUser]:
        result = await self._session.execute(select(StaffUser).order_by(StaffUser.created_at))
        return result.scalars().all()

    async def create_user(
        self,
        username: str,
        password: str,
        role: Role,
        actor: Actor | None = None,
        consultant_name: str | None = None,
    ) -> StaffUser:
        if role == Role.SYSTEM:
            raise InvalidInputError("The system role cannot be assigned to a login")
        key = username.strip().lower()
        if await self._session.get(StaffUser, key) is not None:
            raise InvalidInputError(f"Username {key} already exists")

        user = StaffUser(
            username=key,
            password_hash=hash_password(password),
            role=role,
            consultant_name=normalize_staff_name(consultant_name) or None,
            is_active=True,
            created_at=utcnow(),
        )
        self._session.add(user)
        await self._session.flush()
        await self._audit.log_event(actor, "create", "user", key, {"role": role.value})
        return user

    async def update_user(
        self,
        username: str,
        actor: Actor,
        role: Role | None = None,
        consultant_name: str | None = None,
        password: str | None = None,
        is_active: bool | None = None,
    ) -> StaffUser:
        user = await self._session.get(StaffUser, username)
        if user is None:
            raise RecordNotFoundError(f"User {username} not found")
        if role == Role.SYSTEM:
            raise InvalidInputError("The system role cannot be assigned to a login")

        changed: list[str] = []
        if role is not None:
            user.role = role
            changed.append("role")
        if consultant_name is not None:
            user.consultant_name = normalize_staff_name(consultant_name) or None
            changed.append("consultant_name")
        if password:
            user.password_hash = hash_password(password)
            changed.append("password")
        if is_active is not None:
            user.is_active = is_active
            changed.append("is_active")

        await self._session.flush()
        await self._audit.log_event(actor, "update", "user", username, {"fields": changed})
        return user

    async def delete_user(self, username: str, actor: Actor) -> None:
        if username == actor.username:
            raise PermissionDeniedError("Cannot delete your own account")
        user = await self._session.get(StaffUser, username)
        if user is None:
            raise RecordNotFoundError(f"User {username} not found")
        await self._session.delete(user)
        await self._audit.log_event(actor, "delete", "user", username)

    async def staff_names(self) -> dict[str, list[str]]:
        """Names offered in assignment pickers: the two rosters plus every staff name."""
        users = await self.list_users()
        names = {
            Actor.from_staff_user(u).staff_name for u in users
        } | set(CLIENT_LAWYERS) | set(INTAKE_LAWYERS)
        return {
            "client_lawyers": list(CLIENT_LAWYERS),
            "intake_lawyers": list(INTAKE_LAWYERS),
            "all_lawyers": sorted(n for n in names if n),
        }
