"""Pydantic schemas for user administration and supervision."""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

from app.models.user import Role
from app.services.assignment import AdminGuardStatus


class UserSummary(BaseModel):
    id: str
    email: str
    name: str
    phone: str | None = None
    role: Role
    supervisor_id: str | None = None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class UserCreate(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)
    phone: str | None = None
    role: Role = Role.PROMOTER
    supervisor_id: str | None = None


class ProfileUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    phone: str | None = Field(None, max_length=20)

    @field_validator("name")
    @classmethod
    def _name_not_null(cls, v):
        if v is None:
            raise ValueError("name cannot be null")
        return v


class RoleUpdate(BaseModel):
    role: Role


class StatusUpdate(BaseModel):
    is_active: bool


class SupervisorUpdate(BaseModel):
    supervisor_id: str | None


class PromoterAssign(BaseModel):
    promoter_id: str


class UserDetail(BaseModel):
    """A user plus whether removing them from the admin tier is blocked."""

    user: UserSummary
    admin_guard: AdminGuardStatus
