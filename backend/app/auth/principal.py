"""The authenticated actor of a request.

A Principal is built per request from a validated credential and the
current user row. It is never persisted and carries nothing beyond what
authorization needs.
"""

from __future__ import annotations

from dataclasses import dataclass

from app.models.user import Role, Tier, User


@dataclass(frozen=True)
class Principal:
    id: str
    role: Role
    active: bool = True

    @property
    def tier(self) -> Tier:
        return self.role.tier

    @property
    def is_administrator(self) -> bool:
        return self.role.is_administrator

    @classmethod
    def from_user(cls, user: User) -> Principal:
        return cls(id=user.id, role=Role(user.role), active=bool(user.is_active))
