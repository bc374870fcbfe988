"""Aggregate model imports for Alembic auto-detection."""

from app.models.user import ADMINISTRATOR_ROLES, Role, Tier, User  # noqa: F401
from app.models.client import Client  # noqa: F401
from app.models.visit import Visit, VisitStatus  # noqa: F401
