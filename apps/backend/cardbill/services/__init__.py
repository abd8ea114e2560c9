"""
Services package

Business logic for invoices, their shared credit limit, payment methods and
transactions.
"""

from .invoice_limit_service import InvoiceLimitService, LimitValidation
from .invoice_scheduler_service import InvoiceSchedulerService, SchedulerRunResult
from .invoice_service import InvoiceService
from .payment_method_service import PaymentMethodService
from .transaction_service import TransactionService

__all__ = [
    "InvoiceLimitService",
    "LimitValidation",
    "InvoiceSchedulerService",
    "SchedulerRunResult",
    "InvoiceService",
    "PaymentMethodService",
    "TransactionService",
]
