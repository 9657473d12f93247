"""add_billing_tables

Revision ID: 5a1c7e2b9d40
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "5a1c7e2b9d40"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create subscription, add-on purchase and promotional code tables."""

    op.create_table(
        "billing_subscriptions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("plan", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        # Trial
        sa.Column("trial_start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("trial_end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("trial_duration_days", sa.Integer(), nullable=False, server_default="14"),
        sa.Column("promotional_code", sa.String(length=50), nullable=True),
        # Payment
        sa.Column(
            "has_payment_method", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("payment_customer_id", sa.String(length=255), nullable=True),
        sa.Column("first_payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_payment_date", sa.DateTime(timezone=True), nullable=True),
        # Pricing
        sa.Column("base_monthly_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("custom_monthly_price", sa.Numeric(10, 2), nullable=True),
        sa.Column("extra_employees", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("extra_managers", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("extra_admins", sa.Integer(), nullable=False, server_default="0"),
        # Feature overrides
        sa.Column(
            "use_custom_feature_overrides",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("custom_features", sa.JSON(), nullable=False),
        # Billing period
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("cancellation_effective_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_plan", sa.String(length=20), nullable=True),
        sa.Column("plan_change_date", sa.DateTime(timezone=True), nullable=True),
        # Timestamps
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("company_id"),
    )
    op.create_index("ix_billing_subscriptions_status", "billing_subscriptions", ["status"])
    op.create_index(
        "ix_billing_subscriptions_trial_end",
        "billing_subscriptions",
        ["status", "trial_end_date"],
    )

    op.create_table(
        "billing_company_addons",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("addon_key", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_effective_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cooldown_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_charge_reference", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "company_id", "addon_key", name="uq_billing_company_addons_company_addon"
        ),
    )
    op.create_index(
        "ix_billing_company_addons_status_effective",
        "billing_company_addons",
        ["status", "cancellation_effective_date"],
    )

    op.create_table(
        "billing_promotional_codes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("trial_duration_days", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("current_uses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )


def downgrade() -> None:
    """Drop billing tables."""
    op.drop_table("billing_promotional_codes")
    op.drop_index(
        "ix_billing_company_addons_status_effective", table_name="billing_company_addons"
    )
    op.drop_table("billing_company_addons")
    op.drop_index("ix_billing_subscriptions_trial_end", table_name="billing_subscriptions")
    op.drop_index("ix_billing_subscriptions_status", table_name="billing_subscriptions")
    op.drop_table("billing_subscriptions")
