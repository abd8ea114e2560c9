from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from zoneinfo import ZoneInfo
from enum import Enum
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Index,
    Boolean,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .core.config import settings
from .core.database import Base
from .core.exceptions import InsufficientLimitError, InvalidOperationError, format_money


try:
    LOCAL_ZONE = ZoneInfo(getattr(settings, "TIMEZONE", "America/Sao_Paulo"))
except Exception:
    LOCAL_ZONE = ZoneInfo("UTC")


ZERO = Decimal("0")
MONEY = Numeric(12, 2)


def now_local_naive() -> datetime:
    """Return naive datetime normalized to configured local timezone."""
    return datetime.now(LOCAL_ZONE).replace(tzinfo=None)


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_local_naive, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=now_local_naive, onupdate=now_local_naive, nullable=False)


class User(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(100))
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    invoices: Mapped[list["Invoice"]] = relationship(back_populates="user")
    payment_methods: Mapped[list["PaymentMethod"]] = relationship(back_populates="user")


class CategoryType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class Category(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[CategoryType] = mapped_column(SAEnum(CategoryType, name="category_type"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class InvoiceStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    # Declared for future use; nothing transitions into it yet.
    PENDING = "PENDING"


INVOICE_STATUS_DESCRIPTIONS: dict[InvoiceStatus, str] = {
    InvoiceStatus.OPEN: "Open - waiting for closing",
    InvoiceStatus.CLOSED: "Closed - waiting for payment",
    InvoiceStatus.PAID: "Paid - payment registered",
    InvoiceStatus.OVERDUE: "Overdue - past due date",
    InvoiceStatus.PENDING: "Pending - in processing",
}


class Invoice(Base, TimestampMixin):
    """One billing cycle of a credit facility, possibly shared by several cards.

    ``credit_limit``/``used_limit`` form the shared limit ledger. Persisted
    rows are mutated through ``InvoiceLimitService`` which issues conditional
    updates; the methods here hold the same rules for in-memory use and for
    the service's error classification.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(255))
    closing_day: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    due_day: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    status: Mapped[InvoiceStatus] = mapped_column(
        SAEnum(InvoiceStatus, name="invoice_status"),
        nullable=False,
        default=InvoiceStatus.OPEN,
    )
    credit_limit: Mapped[Decimal | None] = mapped_column(MONEY)
    used_limit: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    total_amount: Mapped[Decimal | None] = mapped_column(MONEY)
    closing_date: Mapped[date | None] = mapped_column(Date)
    due_date: Mapped[date | None] = mapped_column(Date)
    payment_date: Mapped[date | None] = mapped_column(Date)
    # First day of the billing period a scheduler-opened successor belongs to.
    # NULL for invoices created by users.
    period_start: Mapped[date | None] = mapped_column(Date)
    color: Mapped[str] = mapped_column(String(7), nullable=False, default="#6B7280")
    icon: Mapped[str] = mapped_column(String(16), nullable=False, default="📄")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    user: Mapped["User"] = relationship(back_populates="invoices")
    payment_methods: Mapped[list["PaymentMethod"]] = relationship(back_populates="invoice")
    transactions: Mapped[list["Transaction"]] = relationship(back_populates="invoice")

    __table_args__ = (
        CheckConstraint("closing_day BETWEEN 1 AND 31", name="ck_invoice_closing_day"),
        CheckConstraint("due_day BETWEEN 1 AND 31", name="ck_invoice_due_day"),
        CheckConstraint("used_limit >= 0", name="ck_invoice_used_limit_positive"),
        CheckConstraint("credit_limit IS NULL OR credit_limit >= 0", name="ck_invoice_credit_limit_positive"),
        CheckConstraint(
            "credit_limit IS NULL OR used_limit <= credit_limit",
            name="ck_invoice_used_within_limit",
        ),
        Index("ix_invoice_user_name", "user_id", "name"),
        Index("ix_invoice_status_active", "status", "is_active"),
    )

    # --- Limit ledger -----------------------------------------------------
    @property
    def has_credit_limit(self) -> bool:
        # a zero limit counts as "not configured", same as NULL
        return self.credit_limit is not None and to_decimal(self.credit_limit) > 0

    @property
    def available_limit(self) -> Decimal:
        if not self.credit_limit:
            return ZERO
        return to_decimal(self.credit_limit) - to_decimal(self.used_limit)

    def has_available_limit(self, amount: Decimal | int | float) -> bool:
        return self.available_limit >= to_decimal(amount)

    def use_limit(self, amount: Decimal | int | float) -> None:
        amount = to_decimal(amount)
        if not self.has_credit_limit:
            raise InvalidOperationError("This invoice has no credit limit configured")
        if not self.has_available_limit(amount):
            raise InsufficientLimitError(self.available_limit, amount)
        self.used_limit = to_decimal(self.used_limit) + amount

    def release_limit(self, amount: Decimal | int | float) -> None:
        """Give back reserved limit (refunds, cancellations, deletions); never below zero."""
        self.used_limit = max(ZERO, to_decimal(self.used_limit) - to_decimal(amount))

    def update_credit_limit(self, new_limit: Decimal | int | float) -> None:
        new_limit = to_decimal(new_limit)
        used = to_decimal(self.used_limit)
        if new_limit < used:
            raise InvalidOperationError(
                f"New limit ({format_money(new_limit)}) cannot be lower than the used limit ({format_money(used)})"
            )
        if new_limit <= 0:
            raise InvalidOperationError("Credit limit must be greater than zero")
        self.credit_limit = new_limit

    def limit_usage_percentage(self) -> float:
        if not self.credit_limit:
            return 0.0
        return float(to_decimal(self.used_limit) / to_decimal(self.credit_limit) * 100)

    def limit_info(self) -> dict[str, Any]:
        return {
            "available": self.available_limit,
            "used": to_decimal(self.used_limit),
            "total": to_decimal(self.credit_limit),
            "usage_percentage": self.limit_usage_percentage(),
        }

    # --- Status -----------------------------------------------------------
    def is_open(self) -> bool:
        return self.status == InvoiceStatus.OPEN

    def is_closed(self) -> bool:
        return self.status == InvoiceStatus.CLOSED

    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID

    def is_overdue(self) -> bool:
        return self.status == InvoiceStatus.OVERDUE

    def can_close(self) -> bool:
        return self.is_open() and self.closing_date is not None

    def can_pay(self) -> bool:
        return (self.is_closed() or self.is_overdue()) and not self.is_paid()

    @property
    def status_description(self) -> str:
        return INVOICE_STATUS_DESCRIPTIONS[InvoiceStatus(self.status)]

    def close(self, closing_date: date, due_date: date, total_amount: Decimal) -> None:
        if not self.is_open():
            raise InvalidOperationError("Only open invoices can be closed")
        self.status = InvoiceStatus.CLOSED
        self.closing_date = closing_date
        self.due_date = due_date
        self.total_amount = to_decimal(total_amount)

    def mark_overdue(self) -> None:
        if not self.is_closed():
            raise InvalidOperationError("Only closed invoices can become overdue")
        self.status = InvoiceStatus.OVERDUE

    def mark_paid(self, payment_date: date) -> None:
        if not self.can_pay():
            raise InvalidOperationError("Invoice cannot be paid at the moment")
        self.status = InvoiceStatus.PAID
        self.payment_date = payment_date

    # --- Aggregate helpers over already-loaded payment methods ------------
    def credit_cards(self) -> list["PaymentMethod"]:
        return [pm for pm in (self.payment_methods or []) if pm.is_active and pm.is_credit_card()]

    def has_credit_cards(self) -> bool:
        return bool(self.credit_cards())

    @property
    def payment_method_ids(self) -> list[int]:
        return [pm.id for pm in (self.payment_methods or []) if pm.is_active]

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Invoice id={self.id!r} name={self.name!r} status={self.status!r} "
            f"credit_limit={self.credit_limit!r} used_limit={self.used_limit!r}>"
        )


class PaymentMethodType(str, Enum):
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    PIX = "PIX"
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"
    OTHER = "OTHER"


class CardBrand(str, Enum):
    VISA = "VISA"
    MASTERCARD = "MASTERCARD"
    ELO = "ELO"
    AMEX = "AMEX"
    HIPERCARD = "HIPERCARD"
    OTHER = "OTHER"


class PaymentMethod(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[PaymentMethodType] = mapped_column(SAEnum(PaymentMethodType, name="payment_method_type"), nullable=False)
    brand: Mapped[CardBrand | None] = mapped_column(SAEnum(CardBrand, name="card_brand"))
    last_four_digits: Mapped[str | None] = mapped_column(String(4))
    due_day: Mapped[int | None] = mapped_column(SmallInteger)
    color: Mapped[str] = mapped_column(String(7), nullable=False, default="#6B7280")
    icon: Mapped[str] = mapped_column(String(16), nullable=False, default="💳")
    invoice_id: Mapped[int | None] = mapped_column(ForeignKey("invoice.id", ondelete="SET NULL"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    user: Mapped["User"] = relationship(back_populates="payment_methods")
    invoice: Mapped["Invoice | None"] = relationship(back_populates="payment_methods")

    __table_args__ = (
        CheckConstraint("invoice_id IS NULL OR type = 'CREDIT_CARD'", name="ck_payment_method_invoice_requires_credit"),
    )

    def is_credit_card(self) -> bool:
        return self.type == PaymentMethodType.CREDIT_CARD

    def is_debit_card(self) -> bool:
        return self.type == PaymentMethodType.DEBIT_CARD

    def is_card(self) -> bool:
        return self.is_credit_card() or self.is_debit_card()

    def has_invoice(self) -> bool:
        return self.is_credit_card() and self.invoice_id is not None

    @property
    def display_name(self) -> str:
        if self.is_card() and self.last_four_digits:
            return f"{self.name} (**** {self.last_four_digits})"
        return self.name


class TxnType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"


class Transaction(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    type: Mapped[TxnType] = mapped_column(SAEnum(TxnType, name="txn_type"), nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        SAEnum(TransactionStatus, name="txn_status"),
        nullable=False,
        default=TransactionStatus.COMPLETED,
    )
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date)
    installments_current: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=1)
    installments_total: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=1)
    notes: Mapped[str | None] = mapped_column(String(500))
    tags: Mapped[str | None] = mapped_column(String(255))
    category_id: Mapped[int | None] = mapped_column(ForeignKey("category.id", ondelete="SET NULL"))
    payment_method_id: Mapped[int | None] = mapped_column(ForeignKey("paymentmethod.id", ondelete="SET NULL"))
    invoice_id: Mapped[int | None] = mapped_column(ForeignKey("invoice.id", ondelete="SET NULL"))
    parent_transaction_id: Mapped[int | None] = mapped_column(ForeignKey("transaction.id", ondelete="CASCADE"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    category: Mapped["Category | None"] = relationship("Category")
    payment_method: Mapped["PaymentMethod | None"] = relationship("PaymentMethod")
    invoice: Mapped["Invoice | None"] = relationship(back_populates="transactions")
    parent_transaction: Mapped["Transaction | None"] = relationship(
        "Transaction",
        remote_side="Transaction.id",
        back_populates="child_transactions",
    )
    child_transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction",
        back_populates="parent_transaction",
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_txn_amount_positive"),
        CheckConstraint("invoice_id IS NULL OR type = 'EXPENSE'", name="ck_txn_invoice_requires_expense"),
        CheckConstraint(
            "invoice_id IS NULL OR payment_method_id IS NOT NULL",
            name="ck_txn_invoice_requires_payment_method",
        ),
        CheckConstraint("due_date IS NULL OR due_date >= transaction_date", name="ck_txn_due_after_date"),
        CheckConstraint("installments_current <= installments_total", name="ck_txn_installment_position"),
        Index("ix_txn_user_date", "user_id", "transaction_date"),
        Index("ix_txn_invoice_id", "invoice_id"),
    )

    def is_income(self) -> bool:
        return self.type == TxnType.INCOME

    def is_expense(self) -> bool:
        return self.type == TxnType.EXPENSE

    def is_pending(self) -> bool:
        return self.status == TransactionStatus.PENDING

    def is_completed(self) -> bool:
        return self.status == TransactionStatus.COMPLETED

    def is_canceled(self) -> bool:
        return self.status == TransactionStatus.CANCELED

    def is_installment(self) -> bool:
        return (self.installments_total or 1) > 1

    @property
    def holds_reservation(self) -> bool:
        """True while this row's amount is reserved against its invoice's limit."""
        return bool(self.is_active and self.is_expense() and self.invoice_id and not self.is_canceled())
