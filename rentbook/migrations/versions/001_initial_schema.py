"""Initial schema: tenancies, rent revisions, billing and payments.

Revision ID: 001_initial_schema
Revises:
Create Date: 2024-05-01 09:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
    ]


def _money(name: str, nullable: bool = False, **kwargs) -> sa.Column:
    if not nullable:
        kwargs.setdefault("server_default", "0")
    return sa.Column(name, sa.Numeric(12, 2), nullable=nullable, **kwargs)


def upgrade() -> None:
    # Reference data
    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("mobile", sa.String(length=50), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "units",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "wing",
            sa.String(length=50),
            nullable=False,
            comment="Building section used as the billing-batch boundary",
        ),
        sa.Column("unit_number", sa.String(length=50), nullable=False),
        sa.Column("floor", sa.String(length=20), nullable=True),
        sa.Column("meter_number", sa.String(length=50), nullable=True),
        sa.Column("is_occupied", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("current_tenancy_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_units_wing", "wing"),
    )

    op.create_table(
        "tenancies",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("unit_id", sa.Integer(), nullable=False),
        sa.Column("landlord_name", sa.String(length=255), nullable=True),
        sa.Column(
            "grn_number",
            sa.String(length=100),
            nullable=True,
            comment="Tenancy reference code, alternate matching key for billing entries",
        ),
        sa.Column(
            "status",
            sa.Enum("ACTIVE", "ENDED", name="tenancystatus"),
            nullable=False,
            server_default="ACTIVE",
        ),
        sa.Column(
            "rent_payable_day",
            sa.String(length=20),
            nullable=True,
            comment="Day of month the rent falls due",
        ),
        _money("late_rent_per_day", nullable=True),
        sa.Column("late_grace_days", sa.Integer(), nullable=True),
        _money(
            "default_rent",
            nullable=True,
            comment="Agreement rent, seeds the first rent revision",
        ),
        sa.Column("commencement_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["unit_id"], ["units.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_tenancies_tenant_id", "tenant_id"),
        sa.Index("ix_tenancies_unit_id", "unit_id"),
        sa.Index("ix_tenancies_grn_number", "grn_number"),
        sa.Index("idx_tenancy_tenant_status", "tenant_id", "status"),
    )

    op.create_table(
        "rent_revisions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenancy_id", sa.Integer(), nullable=False),
        sa.Column(
            "effective_month",
            sa.String(length=7),
            nullable=False,
            comment="First month (YYYY-MM) from which the rent applies",
        ),
        _money("rent_amount"),
        sa.Column("note", sa.String(length=500), nullable=False, server_default=""),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tenancy_id"], ["tenancies.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenancy_id", "effective_month", name="uq_rent_revision_tenancy_month"),
        sa.Index("ix_rent_revisions_tenancy_id", "tenancy_id"),
    )

    # Billing
    op.create_table(
        "wing_month_configs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("month_key", sa.String(length=7), nullable=False),
        sa.Column("wing", sa.String(length=50), nullable=False),
        _money("electricity_rate", comment="Rate per electricity unit"),
        _money("sweeping_per_flat"),
        _money("motor_prev"),
        _money("motor_new"),
        _money("motor_units", comment="motor_new - motor_prev, may be negative"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("month_key", "wing", name="uq_wing_month_config"),
        sa.Index("ix_wing_month_configs_month_key", "month_key"),
    )

    op.create_table(
        "tenant_monthly_readings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("month_key", sa.String(length=7), nullable=False),
        sa.Column("tenancy_id", sa.Integer(), nullable=False),
        _money("prev_reading"),
        _money("new_reading"),
        sa.Column(
            "included",
            sa.Boolean(),
            nullable=False,
            server_default="1",
            comment="Tenancy takes part in shared-cost billing this month",
        ),
        _money("override_rent", nullable=True),
        sa.Column("notes", sa.String(length=500), nullable=False, server_default=""),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tenancy_id"], ["tenancies.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("month_key", "tenancy_id", name="uq_reading_month_tenancy"),
        sa.Index("ix_tenant_monthly_readings_month_key", "month_key"),
        sa.Index("ix_tenant_monthly_readings_tenancy_id", "tenancy_id"),
    )

    op.create_table(
        "bill_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("month_key", sa.String(length=7), nullable=False),
        sa.Column("tenancy_id", sa.Integer(), nullable=False),
        _money("rent_amount"),
        _money("electricity_units"),
        _money("electricity_amount"),
        _money("motor_share_amount"),
        _money("sweep_amount"),
        _money("total_amount", comment="Rounded to the nearest whole currency unit"),
        sa.Column("payable_date", sa.String(length=20), nullable=False, server_default=""),
        sa.Column(
            "generated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
        _money("amount_paid", nullable=True),
        sa.Column("is_paid", sa.Boolean(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tenancy_id"], ["tenancies.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("month_key", "tenancy_id", name="uq_bill_line_month_tenancy"),
        sa.Index("ix_bill_lines_month_key", "month_key"),
        sa.Index("ix_bill_lines_tenancy_id", "tenancy_id"),
        sa.Index("idx_bill_line_paid", "is_paid"),
    )

    # Payments
    op.create_table(
        "attachments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("file_path", sa.String(length=1000), nullable=False),
        sa.Column(
            "content_type",
            sa.String(length=100),
            nullable=False,
            server_default="application/octet-stream",
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("bill_line_id", sa.Integer(), nullable=True),
        sa.Column("tenant_id", sa.Integer(), nullable=True),
        _money("amount"),
        sa.Column("mode", sa.String(length=50), nullable=False, server_default=""),
        sa.Column("reference", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("notes", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("attachment_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["bill_line_id"], ["bill_lines.id"]),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["attachment_id"], ["attachments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_payments_bill_line_id", "bill_line_id"),
        sa.Index("ix_payments_tenant_id", "tenant_id"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=20), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("idx_audit_log_entity", "entity_type", "entity_id"),
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("payments")
    op.drop_table("attachments")
    op.drop_table("bill_lines")
    op.drop_table("tenant_monthly_readings")
    op.drop_table("wing_month_configs")
    op.drop_table("rent_revisions")
    op.drop_table("tenancies")
    op.drop_table("units")
    op.drop_table("tenants")
