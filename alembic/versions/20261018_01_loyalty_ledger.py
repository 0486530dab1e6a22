"""Create customers, loyalty accounts, ledger, and vouchers."""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_IDEMPOTENT_REFERENCES = "reference_type IN ('order', 'birthday_bonus')"


def upgrade() -> None:
    op.create_table(
        "customers",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("birth_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_customers_tenant_id", "customers", ["tenant_id"])
    op.create_index("ix_customers_email", "customers", ["email"], unique=True)

    op.create_table(
        "loyalty_accounts",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("customer_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("customer_id", name="uq_loyalty_accounts_customer_id"),
    )

    op.create_table(
        "loyalty_ledger",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "account_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loyalty_accounts.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("points_delta", sa.Integer(), nullable=False),
        sa.Column("reference_type", sa.String(length=24), nullable=False),
        sa.Column("reference_id", sa.String(length=64), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("account_id", "sequence", name="uq_loyalty_ledger_account_sequence"),
        sa.CheckConstraint("points_delta <> 0", name="ck_loyalty_ledger_points_delta_nonzero"),
    )
    op.create_index(
        "ix_loyalty_ledger_account_created",
        "loyalty_ledger",
        ["account_id", "created_at"],
    )
    op.create_index(
        "uq_loyalty_ledger_idempotent_reference",
        "loyalty_ledger",
        ["account_id", "reference_type", "reference_id"],
        unique=True,
        sqlite_where=sa.text(_IDEMPOTENT_REFERENCES),
        postgresql_where=sa.text(_IDEMPOTENT_REFERENCES),
    )

    op.create_table(
        "loyalty_vouchers",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("customer_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False, unique=True),
        sa.Column("kind", sa.String(length=16), nullable=False, server_default="fixed"),
        sa.Column("amount", sa.Numeric(16, 2), nullable=False),
        sa.Column("min_spend", sa.Numeric(16, 2), nullable=True),
        sa.Column("usage_limit", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("usage_per_customer", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_loyalty_vouchers_tenant_id", "loyalty_vouchers", ["tenant_id"])
    op.create_index("ix_loyalty_vouchers_customer_id", "loyalty_vouchers", ["customer_id"])


def downgrade() -> None:
    op.drop_index("ix_loyalty_vouchers_customer_id", table_name="loyalty_vouchers")
    op.drop_index("ix_loyalty_vouchers_tenant_id", table_name="loyalty_vouchers")
    op.drop_table("loyalty_vouchers")
    op.drop_index("uq_loyalty_ledger_idempotent_reference", table_name="loyalty_ledger")
    op.drop_index("ix_loyalty_ledger_account_created", table_name="loyalty_ledger")
    op.drop_table("loyalty_ledger")
    op.drop_table("loyalty_accounts")
    op.drop_index("ix_customers_email", table_name="customers")
    op.drop_index("ix_customers_tenant_id", table_name="customers")
    op.drop_table("customers")
