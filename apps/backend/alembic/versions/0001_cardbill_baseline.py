"""cardbill baseline: users, categories, invoices, payment methods, transactions

Revision ID: 0001_cardbill_baseline
Revises:
Create Date: 2025-11-10 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_cardbill_baseline"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

INVOICE_STATUS = ("OPEN", "CLOSED", "PAID", "OVERDUE", "PENDING")
PAYMENT_METHOD_TYPE = ("CREDIT_CARD", "DEBIT_CARD", "PIX", "CASH", "BANK_TRANSFER", "OTHER")
CARD_BRAND = ("VISA", "MASTERCARD", "ELO", "AMEX", "HIPERCARD", "OTHER")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("name", sa.String(length=100), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "category",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", sa.Enum("INCOME", "EXPENSE", name="category_type"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "invoice",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("closing_day", sa.SmallInteger(), nullable=False),
        sa.Column("due_day", sa.SmallInteger(), nullable=False),
        sa.Column("status", sa.Enum(*INVOICE_STATUS, name="invoice_status"), nullable=False, server_default="OPEN"),
        sa.Column("credit_limit", sa.Numeric(12, 2), nullable=True),
        sa.Column("used_limit", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("closing_date", sa.Date(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("payment_date", sa.Date(), nullable=True),
        sa.Column("period_start", sa.Date(), nullable=True),
        sa.Column("color", sa.String(length=7), nullable=False, server_default="#6B7280"),
        sa.Column("icon", sa.String(length=16), nullable=False, server_default="📄"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("closing_day BETWEEN 1 AND 31", name="ck_invoice_closing_day"),
        sa.CheckConstraint("due_day BETWEEN 1 AND 31", name="ck_invoice_due_day"),
        sa.CheckConstraint("used_limit >= 0", name="ck_invoice_used_limit_positive"),
        sa.CheckConstraint("credit_limit IS NULL OR credit_limit >= 0", name="ck_invoice_credit_limit_positive"),
        sa.CheckConstraint("credit_limit IS NULL OR used_limit <= credit_limit", name="ck_invoice_used_within_limit"),
    )
    op.create_index("ix_invoice_user_name", "invoice", ["user_id", "name"], unique=False)
    op.create_index("ix_invoice_status_active", "invoice", ["status", "is_active"], unique=False)

    op.create_table(
        "paymentmethod",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", sa.Enum(*PAYMENT_METHOD_TYPE, name="payment_method_type"), nullable=False),
        sa.Column("brand", sa.Enum(*CARD_BRAND, name="card_brand"), nullable=True),
        sa.Column("last_four_digits", sa.String(length=4), nullable=True),
        sa.Column("due_day", sa.SmallInteger(), nullable=True),
        sa.Column("color", sa.String(length=7), nullable=False, server_default="#6B7280"),
        sa.Column("icon", sa.String(length=16), nullable=False, server_default="💳"),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoice.id", ondelete="SET NULL"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint(
            "invoice_id IS NULL OR type = 'CREDIT_CARD'",
            name="ck_payment_method_invoice_requires_credit",
        ),
    )

    op.create_table(
        "transaction",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("type", sa.Enum("INCOME", "EXPENSE", name="txn_type"), nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING", "COMPLETED", "CANCELED", name="txn_status"),
            nullable=False,
            server_default="COMPLETED",
        ),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("installments_current", sa.SmallInteger(), nullable=False, server_default="1"),
        sa.Column("installments_total", sa.SmallInteger(), nullable=False, server_default="1"),
        sa.Column("notes", sa.String(length=500), nullable=True),
        sa.Column("tags", sa.String(length=255), nullable=True),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("category.id", ondelete="SET NULL"), nullable=True),
        sa.Column(
            "payment_method_id",
            sa.Integer(),
            sa.ForeignKey("paymentmethod.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoice.id", ondelete="SET NULL"), nullable=True),
        sa.Column(
            "parent_transaction_id",
            sa.Integer(),
            sa.ForeignKey("transaction.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_txn_amount_positive"),
        sa.CheckConstraint("invoice_id IS NULL OR type = 'EXPENSE'", name="ck_txn_invoice_requires_expense"),
        sa.CheckConstraint(
            "invoice_id IS NULL OR payment_method_id IS NOT NULL",
            name="ck_txn_invoice_requires_payment_method",
        ),
        sa.CheckConstraint("due_date IS NULL OR due_date >= transaction_date", name="ck_txn_due_after_date"),
        sa.CheckConstraint("installments_current <= installments_total", name="ck_txn_installment_position"),
    )
    op.create_index("ix_txn_user_date", "transaction", ["user_id", "transaction_date"], unique=False)
    op.create_index("ix_txn_invoice_id", "transaction", ["invoice_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_txn_invoice_id", table_name="transaction")
    op.drop_index("ix_txn_user_date", table_name="transaction")
    op.drop_table("transaction")
    op.drop_table("paymentmethod")
    op.drop_index("ix_invoice_status_active", table_name="invoice")
    op.drop_index("ix_invoice_user_name", table_name="invoice")
    op.drop_table("invoice")
    op.drop_table("category")
    op.drop_table("user")
