from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

from .models import (
    CardBrand,
    InvoiceStatus,
    PaymentMethodType,
    TransactionStatus,
    TxnType,
)


LimitStatus = Literal["healthy", "attention", "warning", "critical"]

_HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"


# --- Invoices ---------------------------------------------------------------

class InvoiceBase(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=255)
    closing_day: int = Field(..., ge=1, le=31)
    due_day: int = Field(..., ge=1, le=31)
    color: str = Field(default="#6B7280", pattern=_HEX_COLOR)
    icon: str = Field(default="📄", max_length=16)
    order: int = 0


class InvoiceCreate(InvoiceBase):
    credit_limit: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=2)


class InvoiceUpdate(BaseModel):
    """Editable invoice fields.

    Credit limit and status are absent on purpose: the limit goes through
    ``PATCH /invoices/{id}/credit-limit`` and the status through close/pay or
    the daily processing.
    """

    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=255)
    closing_day: Optional[int] = Field(default=None, ge=1, le=31)
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    color: Optional[str] = Field(default=None, pattern=_HEX_COLOR)
    icon: Optional[str] = Field(default=None, max_length=16)
    order: Optional[int] = None


class CreditCardSummary(BaseModel):
    id: int
    name: str
    last_four_digits: Optional[str] = None


class InvoiceOut(InvoiceBase):
    id: int
    user_id: int
    status: InvoiceStatus
    status_description: str
    credit_limit: Optional[Decimal] = None
    used_limit: Decimal
    available_limit: Decimal
    total_amount: Optional[Decimal] = None
    closing_date: Optional[date] = None
    due_date: Optional[date] = None
    payment_date: Optional[date] = None
    period_start: Optional[date] = None
    is_active: bool
    payment_method_ids: list[int] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InvoiceCloseRequest(BaseModel):
    total_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)


class CreditLimitUpdate(BaseModel):
    credit_limit: Decimal = Field(..., max_digits=12, decimal_places=2)


class LimitInfoOut(BaseModel):
    available: Decimal
    used: Decimal
    total: Decimal
    usage_percentage: float
    credit_cards_count: int
    status: LimitStatus


class InvoiceLimitOverviewOut(BaseModel):
    id: int
    name: str
    status: InvoiceStatus
    credit_limit: Optional[Decimal] = None
    used_limit: Decimal
    available_limit: Decimal
    usage_percentage: float
    limit_status: LimitStatus
    credit_cards_count: int
    credit_cards: list[CreditCardSummary] = Field(default_factory=list)
    can_make_purchases: bool


class LimitStatisticsOut(BaseModel):
    total_limit: Decimal
    total_used: Decimal
    total_available: Decimal
    average_usage: float
    critical_count: int
    healthy_count: int


class SchedulerFailureOut(BaseModel):
    invoice_id: int
    phase: str
    error: str


class SchedulerRunOut(BaseModel):
    run_date: date
    closed: int
    created: int
    overdue: int
    failures: list[SchedulerFailureOut] = Field(default_factory=list)


# --- Payment methods --------------------------------------------------------

class PaymentMethodBase(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    type: PaymentMethodType
    brand: Optional[CardBrand] = None
    last_four_digits: Optional[str] = Field(default=None, pattern=r"^\d{4}$")
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    color: str = Field(default="#6B7280", pattern=_HEX_COLOR)
    icon: str = Field(default="💳", max_length=16)
    invoice_id: Optional[int] = None
    order: int = 0


class PaymentMethodCreate(PaymentMethodBase):
    pass


class PaymentMethodUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    brand: Optional[CardBrand] = None
    last_four_digits: Optional[str] = Field(default=None, pattern=r"^\d{4}$")
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    color: Optional[str] = Field(default=None, pattern=_HEX_COLOR)
    icon: Optional[str] = Field(default=None, max_length=16)
    invoice_id: Optional[int] = None
    order: Optional[int] = None


class PaymentMethodOut(PaymentMethodBase):
    id: int
    user_id: int
    display_name: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Transactions -----------------------------------------------------------

class TransactionCreate(BaseModel):
    description: str = Field(..., min_length=2, max_length=255)
    # Sign and magnitude are checked by the service so the error shape matches
    # the other transaction rules.
    amount: Decimal = Field(..., max_digits=12, decimal_places=2)
    type: TxnType
    status: TransactionStatus = TransactionStatus.COMPLETED
    transaction_date: date
    due_date: Optional[date] = None
    category_id: Optional[int] = None
    payment_method_id: Optional[int] = None
    invoice_id: Optional[int] = None
    parent_transaction_id: Optional[int] = None
    installments_current: int = Field(default=1, ge=1, le=360)
    installments_total: int = Field(default=1, ge=1, le=360)
    notes: Optional[str] = Field(default=None, max_length=500)
    tags: Optional[str] = Field(default=None, max_length=255)

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        return value.strip()


class TransactionUpdate(BaseModel):
    description: Optional[str] = Field(default=None, min_length=2, max_length=255)
    amount: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)
    type: Optional[TxnType] = None
    transaction_date: Optional[date] = None
    due_date: Optional[date] = None
    category_id: Optional[int] = None
    payment_method_id: Optional[int] = None
    invoice_id: Optional[int] = None
    installments_current: Optional[int] = Field(default=None, ge=1, le=360)
    installments_total: Optional[int] = Field(default=None, ge=1, le=360)
    notes: Optional[str] = Field(default=None, max_length=500)
    tags: Optional[str] = Field(default=None, max_length=255)


class TransactionOut(BaseModel):
    id: int
    user_id: int
    description: str
    amount: Decimal
    type: TxnType
    status: TransactionStatus
    transaction_date: date
    due_date: Optional[date] = None
    category_id: Optional[int] = None
    payment_method_id: Optional[int] = None
    invoice_id: Optional[int] = None
    parent_transaction_id: Optional[int] = None
    installments_current: int
    installments_total: int
    notes: Optional[str] = None
    tags: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionListOut(BaseModel):
    transactions: list[TransactionOut]
    total: int
