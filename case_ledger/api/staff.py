"""Admin API routes for the staff directory."""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from ..core import AdminDep, CurrentUserDep, SessionDep
from ..models import Role
from ..schemas import StaffNamesResponse, StaffUserCreate, StaffUserResponse, StaffUserUpdate
from ..services import StaffService

router = APIRouter(prefix="/admin", tags=["staff"])


def get_staff_service(session: SessionDep) -> StaffService:
    return StaffService(session)


StaffServiceDep = Annotated[StaffService, Depends(get_staff_service)]


@router.get("/users", response_model=list[StaffUserResponse])
async def list_users(current_user: AdminDep, service: StaffServiceDep):
    users = await service.list_users()
    return [StaffUserResponse.model_validate(u) for u in users]


@router.post("/users", response_model=StaffUserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(data: StaffUserCreate, current_user: AdminDep, service: StaffServiceDep):
    user = await service.create_user(
        data.username,
        data.password,
        Role(data.role),
        actor=current_user.actor,
        consultant_name=data.consultant_name,
    )
    return StaffUserResponse.model_validate(user)


@router.put("/users/{username}", response_model=StaffUserResponse)
async def update_user(
    username: str,
    data: StaffUserUpdate,
    current_user: AdminDep,
    service: StaffServiceDep,
):
    user = await service.update_user(
        username,
        current_user.actor,
        role=Role(data.role) if data.role is not None else None,
        consultant_name=data.consultant_name,
        password=data.password,
        is_active=data.is_active,
    )
    return StaffUserResponse.model_validate(user)


@router.delete("/users/{username}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(username: str, current_user: AdminDep, service: StaffServiceDep):
    await service.delete_user(username, current_user.actor)


@router.get("/staff-names", response_model=StaffNamesResponse)
async def staff_names(current_user: CurrentUserDep, service: StaffServiceDep):
    """Names offered by assignment pickers. Any signed-in user may read them."""
    return StaffNamesResponse(**await service.staff_names())
