"""Add domainorder table

Revision ID: d1_domain_orders
"""
from alembic import op
import sqlalchemy as sa

revision = "d1_domain_orders"
down_revision = None
branch_labels = None
depends_on = None

DNS_STATUSES = ("pending", "configuring", "propagating", "active", "error")
SSL_STATUSES = ("pending", "provisioning", "active", "error")


def upgrade() -> None:
    op.create_table(
        "domainorder",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("persona_id", sa.Uuid(), nullable=True),
        sa.Column("domain", sa.String(255), nullable=False),
        sa.Column(
            "dns_status",
            sa.Enum(*DNS_STATUSES, name="dnsstatus", native_enum=False, length=16),
            nullable=False,
            server_default="pending",
        ),
        sa.Column(
            "ssl_status",
            sa.Enum(*SSL_STATUSES, name="sslstatus", native_enum=False, length=16),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("registration_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expiration_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("target_host", sa.String(255), nullable=True),
        sa.Column("nameservers", sa.Text(), nullable=True),
        sa.Column("cloudflare_zone_id", sa.String(64), nullable=True),
        sa.Column("cloudflare_cname_record_id", sa.String(64), nullable=True),
        sa.Column("dns_error_message", sa.Text(), nullable=True),
        sa.Column("ssl_error_message", sa.Text(), nullable=True),
        sa.Column("last_dns_check", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_ssl_check", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_domainorder_id", "domainorder", ["id"])
    op.create_index("ix_domainorder_tenant_id", "domainorder", ["tenant_id"])
    op.create_index("ix_domainorder_persona_id", "domainorder", ["persona_id"])
    op.create_index("ix_domainorder_domain", "domainorder", ["domain"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_domainorder_domain", table_name="domainorder")
    op.drop_index("ix_domainorder_persona_id", table_name="domainorder")
    op.drop_index("ix_domainorder_tenant_id", table_name="domainorder")
    op.drop_index("ix_domainorder_id", table_name="domainorder")
    op.drop_table("domainorder")
