"""Pydantic schemas for staff users and authentication."""

from datetime import datetime

from pydantic import Field

from ..models import Role
from .base import LedgerBaseModel


# =============================================================================
# AUTHENTICATION
# =============================================================================


class LoginRequest(LedgerBaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=1)


class TokenResponse(LedgerBaseModel):
    """Token response after successful login."""

    access_token: str
    token_type: str = "bearer"
    username: str
    role: Role
    staff_name: str | None = None


class ActorProfile(LedgerBaseModel):
    """The caller as the scope rules see them."""

    username: str
    role: Role
    staff_name: str | None = None
    managed_names: list[str] = []


# =============================================================================
# STAFF DIRECTORY
# =============================================================================


class StaffUserCreate(LedgerBaseModel):
    username: str = Field(..., min_length=2, max_length=64, pattern=r"^[A-Za-z0-9_.-]+$")
    password: str = Field(..., min_length=8)
    role: Role
    consultant_name: str | None = Field(default=None, max_length=120)


class StaffUserUpdate(LedgerBaseModel):
    role: Role | None = None
    consultant_name: str | None = Field(default=None, max_length=120)
    password: str | None = Field(default=None, min_length=8)
    is_active: bool | None = None


class StaffUserResponse(LedgerBaseModel):
    username: str
    role: Role
    consultant_name: str | None = None
    is_active: bool
    created_at: datetime


class StaffNamesResponse(LedgerBaseModel):
    client_lawyers: list[str]
    intake_lawyers: list[str]
    all_lawyers: list[str]
