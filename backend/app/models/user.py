import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum as SAEnum, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class Tier(str, enum.Enum):
    """Collapsed privilege class used for every authorization decision."""

    ADMINISTRATOR = "administrator"
    SUPERVISOR = "supervisor"
    PROMOTER = "promoter"
    VIEWER = "viewer"


class Role(str, enum.Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    SUPERVISOR = "SUPERVISOR"
    PROMOTER = "PROMOTER"
    VIEWER = "VIEWER"

    @property
    def tier(self) -> Tier:
        return _ROLE_TIERS[self]

    @property
    def is_administrator(self) -> bool:
        return self.tier is Tier.ADMINISTRATOR


_ROLE_TIERS: dict[Role, Tier] = {
    Role.SUPER_ADMIN: Tier.ADMINISTRATOR,
    Role.ADMIN: Tier.ADMINISTRATOR,
    Role.SUPERVISOR: Tier.SUPERVISOR,
    Role.PROMOTER: Tier.PROMOTER,
    Role.VIEWER: Tier.VIEWER,
}

ADMINISTRATOR_ROLES: tuple[Role, ...] = tuple(
    role for role, tier in _ROLE_TIERS.items() if tier is Tier.ADMINISTRATOR
)

# Roles a promoter's supervisor_id may point at. Viewers oversee read-only.
OVERSEER_ROLES: tuple[Role, ...] = (Role.SUPERVISOR, Role.VIEWER)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20))
    role: Mapped[Role] = mapped_column(SAEnum(Role), default=Role.PROMOTER)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Set only for PROMOTER users; must reference one of OVERSEER_ROLES.
    # Validated by the assignment service, not by the schema.
    supervisor_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id"), index=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
