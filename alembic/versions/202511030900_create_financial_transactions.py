"""create financial_transactions

Revision ID: 202511030900
Revises:
Create Date: 2025-11-03 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202511030900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "financial_transactions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "type",
            sa.Enum("DESPESA", "RECEITA", name="transactionkind"),
            nullable=False,
        ),
        sa.Column("status", sa.String(length=40)),
        sa.Column("cost_center_id", sa.String(length=64), nullable=False),
        sa.Column("equipment_id", sa.String(length=64)),
        sa.Column("value", sa.Numeric(14, 2), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("category", sa.String(length=100)),
        sa.Column("sector", sa.String(length=100)),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("payment_method", sa.String(length=60)),
        sa.Column("reference", sa.Text()),
        sa.Column("is_fixed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("fixed_duration_months", sa.Integer()),
        sa.Column("installment_number", sa.Integer()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "installment_number IS NULL OR installment_number >= 1",
            name="ck_financial_transactions_installment_positive",
        ),
    )
    op.create_index(
        "ix_financial_transactions_description_center",
        "financial_transactions",
        ["description", "cost_center_id"],
    )
    op.create_index(
        "ix_financial_transactions_type_fixed",
        "financial_transactions",
        ["type", "is_fixed"],
    )


def downgrade():
    op.drop_index(
        "ix_financial_transactions_type_fixed", table_name="financial_transactions"
    )
    op.drop_index(
        "ix_financial_transactions_description_center",
        table_name="financial_transactions",
    )
    op.drop_table("financial_transactions")
    sa.Enum(name="transactionkind").drop(op.get_bind(), checkfirst=True)
