"""Pydantic schemas for Client CRUD and reassignment."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class ClientCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    business_type: str | None = None
    notes: str | None = None
    # Ignored for promoters (always self); optional for supervisors/admins.
    promoter_id: str | None = None


class ClientUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    business_type: str | None = None
    notes: str | None = None

    @field_validator("name")
    @classmethod
    def _name_not_null(cls, v):
        if v is None:
            raise ValueError("name cannot be null")
        return v


class ClientReassign(BaseModel):
    promoter_id: str


class ClientBatchReassign(BaseModel):
    client_ids: list[str] = Field(..., min_length=1, max_length=500)
    promoter_id: str


class ClientOut(BaseModel):
    id: str
    name: str
    phone: str | None
    email: str | None
    address: str | None
    business_type: str | None
    notes: str | None
    promoter_id: str | None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
