"""Pydantic schemas for Visit CRUD."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from app.models.visit import VisitStatus


class VisitCreate(BaseModel):
    client_id: str
    notes: str = Field(..., min_length=1)
    date: datetime | None = None
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)
    address: str | None = None
    photos: list[str] = Field(default_factory=list)
    signature: str | None = None
    # Administrators only: record the visit on behalf of this promoter.
    promoter_id: str | None = None


class VisitUpdate(BaseModel):
    """Mutable visit fields. Ownership (promoter_id, client_id) never changes."""

    notes: str | None = Field(None, min_length=1)
    status: VisitStatus | None = None
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)
    address: str | None = None
    photos: list[str] | None = None
    signature: str | None = None

    # Omit a field to leave it unchanged; these columns never hold null.
    @field_validator("notes", "status", "photos")
    @classmethod
    def _not_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v

class VisitOut(BaseModel):
    id: str
    promoter_id: str
    client_id: str
    date: datetime
    latitude: float | None
    longitude: float | None
    address: str | None
    notes: str
    photos: list[str]
    signature: str | None
    status: VisitStatus
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
