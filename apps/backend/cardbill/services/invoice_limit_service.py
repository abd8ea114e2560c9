from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Literal, Optional

from sqlalchemy import case, func, update
from sqlalchemy.orm import Session, selectinload

from cardbill import models
from cardbill.core.exceptions import (
    InsufficientLimitError,
    InvalidOperationError,
    NotFoundError,
    format_money,
    service_errors,
)
from cardbill.models import ZERO, to_decimal

logger = logging.getLogger(__name__)

INVOICE_NOT_FOUND = "Invoice not found"
NO_CREDIT_LIMIT = "This invoice has no credit limit configured"


def classify_limit_usage(usage_percentage: float) -> str:
    if usage_percentage >= 90:
        return "critical"
    if usage_percentage >= 75:
        return "warning"
    if usage_percentage >= 50:
        return "attention"
    return "healthy"


@dataclass(frozen=True)
class LimitValidation:
    can_proceed: bool
    available_limit: Optional[Decimal] = None
    message: Optional[str] = None
    reason: Optional[Literal["not_found", "no_limit", "insufficient", "error"]] = None


class InvoiceLimitService:
    """Shared credit limit of an invoice: reserve, release, resize and report.

    Every write goes through a single conditional UPDATE (or a locked row for
    resizes), so two requests racing for the same headroom cannot both pass
    the availability check. ``commit=False`` leaves the change inside the
    caller's transaction, which is how ``TransactionService`` ties the
    reservation to the transaction insert.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    # ---- Lookups ---------------------------------------------------------
    def _query_active(self, invoice_id: int, user_id: Optional[int] = None):
        q = (
            self.db.query(models.Invoice)
            .populate_existing()
            .filter(models.Invoice.id == invoice_id, models.Invoice.is_active.is_(True))
        )
        if user_id is not None:
            q = q.filter(models.Invoice.user_id == user_id)
        return q

    def _get_active(self, invoice_id: int, user_id: Optional[int] = None, *, lock: bool = False) -> models.Invoice:
        q = self._query_active(invoice_id, user_id)
        if lock:
            q = q.with_for_update()
        invoice = q.first()
        if not invoice:
            raise NotFoundError(INVOICE_NOT_FOUND)
        return invoice

    def _finish(self, commit: bool) -> None:
        if commit:
            self.db.commit()
        else:
            self.db.flush()

    # ---- Ledger writes ---------------------------------------------------
    def can_make_purchase(self, invoice_id: int, amount: Decimal | int | float, *, user_id: Optional[int] = None) -> bool:
        with service_errors("Error checking available limit", self.db):
            invoice = self._get_active(invoice_id, user_id)
            if not invoice.has_credit_limit:
                raise InvalidOperationError(NO_CREDIT_LIMIT)
            return invoice.has_available_limit(amount)

    def use_limit(
        self,
        invoice_id: int,
        amount: Decimal | int | float,
        *,
        user_id: Optional[int] = None,
        commit: bool = True,
    ) -> models.Invoice:
        with service_errors("Error using limit", self.db):
            amount = to_decimal(amount)
            if amount <= 0:
                raise InvalidOperationError("Amount must be greater than zero")
            new_used = func.round(models.Invoice.used_limit + amount, 2)
            stmt = (
                update(models.Invoice)
                .where(
                    models.Invoice.id == invoice_id,
                    models.Invoice.is_active.is_(True),
                    models.Invoice.credit_limit > 0,
                    new_used <= models.Invoice.credit_limit,
                )
                .values(used_limit=new_used)
                .execution_options(synchronize_session=False)
            )
            if user_id is not None:
                stmt = stmt.where(models.Invoice.user_id == user_id)
            result = self.db.execute(stmt)

            if result.rowcount == 0:
                # Nothing was written; find out which rule refused it.
                invoice = self._get_active(invoice_id, user_id)
                if not invoice.has_credit_limit:
                    raise InvalidOperationError(NO_CREDIT_LIMIT)
                raise InsufficientLimitError(invoice.available_limit, amount)

            self._finish(commit)
            invoice = self._get_active(invoice_id, user_id)
            logger.info(
                "Limit used: %s on invoice %s (%s). Available: %s",
                format_money(amount),
                invoice.id,
                invoice.name,
                format_money(invoice.available_limit),
                extra={"invoice_id": invoice.id, "step": "limit_used", "amount": str(amount)},
            )
            return invoice

    def release_limit(
        self,
        invoice_id: int,
        amount: Decimal | int | float,
        *,
        user_id: Optional[int] = None,
        commit: bool = True,
    ) -> models.Invoice:
        """Give limit back; over-release clamps ``used_limit`` at zero."""
        with service_errors("Error releasing limit", self.db):
            invoice = self._get_active(invoice_id, user_id)
            amount = to_decimal(amount)
            if amount <= 0:
                return invoice
            stmt = (
                update(models.Invoice)
                .where(models.Invoice.id == invoice.id)
                .values(
                    used_limit=case(
                        (models.Invoice.used_limit > amount, func.round(models.Invoice.used_limit - amount, 2)),
                        else_=0,
                    )
                )
                .execution_options(synchronize_session=False)
            )
            self.db.execute(stmt)
            self._finish(commit)
            invoice = self._get_active(invoice_id, user_id)
            logger.info(
                "Limit released: %s on invoice %s (%s). Available: %s",
                format_money(amount),
                invoice.id,
                invoice.name,
                format_money(invoice.available_limit),
                extra={"invoice_id": invoice.id, "step": "limit_released", "amount": str(amount)},
            )
            return invoice

    def update_credit_limit(
        self,
        invoice_id: int,
        new_limit: Decimal | int | float,
        *,
        user_id: Optional[int] = None,
    ) -> models.Invoice:
        with service_errors("Error updating credit limit", self.db):
            invoice = self._get_active(invoice_id, user_id, lock=True)
            try:
                invoice.update_credit_limit(new_limit)
            except InvalidOperationError:
                self.db.rollback()
                raise
            self.db.commit()
            self.db.refresh(invoice)
            logger.info(
                "Credit limit updated: %s on invoice %s (%s). Available: %s",
                format_money(to_decimal(new_limit)),
                invoice.id,
                invoice.name,
                format_money(invoice.available_limit),
                extra={"invoice_id": invoice.id, "step": "credit_limit_updated"},
            )
            return invoice

    # ---- Pre-check used by the transaction guard -------------------------
    def validate_transaction_with_limit(
        self,
        invoice_id: Optional[int],
        amount: Decimal | int | float,
        transaction_type: models.TxnType | str,
        *,
        user_id: Optional[int] = None,
    ) -> LimitValidation:
        """Non-throwing check of whether a transaction fits the invoice limit.

        Only expenses billed to an invoice consume limit; anything else is
        allowed straight away.
        """
        if models.TxnType(transaction_type) != models.TxnType.EXPENSE or not invoice_id:
            return LimitValidation(can_proceed=True)
        try:
            invoice = self._query_active(invoice_id, user_id).first()
            if not invoice:
                return LimitValidation(can_proceed=False, message=INVOICE_NOT_FOUND, reason="not_found")
            if not invoice.has_credit_limit:
                return LimitValidation(can_proceed=False, message=NO_CREDIT_LIMIT, reason="no_limit")
            available = invoice.available_limit
            if not invoice.has_available_limit(amount):
                return LimitValidation(
                    can_proceed=False,
                    available_limit=available,
                    message=f"Insufficient limit. Available: {format_money(available)}",
                    reason="insufficient",
                )
            return LimitValidation(can_proceed=True, available_limit=available)
        except Exception as exc:
            logger.exception("Error validating limit for invoice %s: %s", invoice_id, exc)
            return LimitValidation(can_proceed=False, message="Error validating limit", reason="error")

    # ---- Read models -----------------------------------------------------
    def get_available_limit(self, invoice_id: int, *, user_id: Optional[int] = None) -> Decimal:
        with service_errors("Error fetching available limit", self.db):
            return self._get_active(invoice_id, user_id).available_limit

    def get_limit_info(self, invoice_id: int, *, user_id: Optional[int] = None) -> dict[str, Any]:
        with service_errors("Error fetching limit info", self.db):
            invoice = (
                self._query_active(invoice_id, user_id)
                .options(selectinload(models.Invoice.payment_methods))
                .first()
            )
            if not invoice:
                raise NotFoundError(INVOICE_NOT_FOUND)
            info = invoice.limit_info()
            return {
                **info,
                "credit_cards_count": len(invoice.credit_cards()),
                "status": classify_limit_usage(info["usage_percentage"]),
            }

    def get_user_invoices_with_limit_info(self, user_id: int) -> list[dict[str, Any]]:
        with service_errors("Error fetching invoices with limit info", self.db):
            invoices = (
                self.db.query(models.Invoice)
                .options(selectinload(models.Invoice.payment_methods))
                .filter(models.Invoice.user_id == user_id, models.Invoice.is_active.is_(True))
                .order_by(models.Invoice.order, models.Invoice.name)
                .all()
            )
            rows: list[dict[str, Any]] = []
            for invoice in invoices:
                usage = invoice.limit_usage_percentage()
                cards = invoice.credit_cards()
                rows.append(
                    {
                        "id": invoice.id,
                        "name": invoice.name,
                        "status": invoice.status,
                        "credit_limit": invoice.credit_limit,
                        "used_limit": to_decimal(invoice.used_limit),
                        "available_limit": invoice.available_limit,
                        "usage_percentage": usage,
                        "limit_status": classify_limit_usage(usage),
                        "credit_cards_count": len(cards),
                        "credit_cards": [
                            {"id": card.id, "name": card.display_name, "last_four_digits": card.last_four_digits}
                            for card in cards
                        ],
                        "can_make_purchases": invoice.has_credit_limit and invoice.available_limit > 0,
                    }
                )
            return rows

    def get_limit_statistics(self, user_id: int) -> dict[str, Any]:
        with service_errors("Error computing limit statistics", self.db):
            invoices = (
                self.db.query(models.Invoice)
                .filter(
                    models.Invoice.user_id == user_id,
                    models.Invoice.is_active.is_(True),
                    models.Invoice.credit_limit > 0,
                )
                .all()
            )
            total_limit = ZERO
            total_used = ZERO
            critical_count = 0
            healthy_count = 0
            for invoice in invoices:
                total_limit += to_decimal(invoice.credit_limit)
                total_used += to_decimal(invoice.used_limit)
                # Dashboard buckets: warning and critical bands both count as critical.
                if invoice.limit_usage_percentage() >= 75:
                    critical_count += 1
                else:
                    healthy_count += 1
            average_usage = float(total_used / total_limit * 100) if total_limit > 0 else 0.0
            return {
                "total_limit": total_limit,
                "total_used": total_used,
                "total_available": total_limit - total_used,
                "average_usage": average_usage,
                "critical_count": critical_count,
                "healthy_count": healthy_count,
            }
