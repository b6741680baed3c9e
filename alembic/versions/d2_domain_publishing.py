"""Add publishing columns to domainorder

Revision ID: d2_domain_publishing
Revises: d1_domain_orders
"""
from alembic import op
import sqlalchemy as sa

revision = "d2_domain_publishing"
down_revision = "d1_domain_orders"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "domainorder",
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.add_column("domainorder", sa.Column("published_at", sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    op.drop_column("domainorder", "published_at")
    op.drop_column("domainorder", "is_published")
