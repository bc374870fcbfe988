"""Users, clients and visits with their ownership edges.

Revision ID: 0001
Revises: (none)
Create Date: 2026-10-19

Run with:
    alembic upgrade head
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa

ROLES = ("SUPER_ADMIN", "ADMIN", "SUPERVISOR", "PROMOTER", "VIEWER")
VISIT_STATUSES = ("PENDING", "COMPLETED", "CANCELLED")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("role", sa.Enum(*ROLES, name="role"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("supervisor_id", sa.String(36), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_supervisor_id", "users", ["supervisor_id"])
    # Administrator counts filter on both columns.
    op.create_index("ix_users_role_active", "users", ["role", "is_active"])

    op.create_table(
        "clients",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(100), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("business_type", sa.String(100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("promoter_id", sa.String(36), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_clients_promoter_id", "clients", ["promoter_id"])

    op.create_table(
        "visits",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("promoter_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("client_id", sa.String(36), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("date", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=False),
        sa.Column("photos", sa.JSON(), server_default="[]"),
        sa.Column("signature", sa.Text(), nullable=True),
        sa.Column(
            "status",
            sa.Enum(*VISIT_STATUSES, name="visitstatus"),
            server_default="COMPLETED",
        ),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_visits_promoter_id", "visits", ["promoter_id"])
    op.create_index("ix_visits_client_id", "visits", ["client_id"])
    op.create_index("ix_visits_date", "visits", ["date"])


def downgrade() -> None:
    op.drop_table("visits")
    op.drop_table("clients")
    op.drop_table("users")
    sa.Enum(name="visitstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="role").drop(op.get_bind(), checkfirst=True)
