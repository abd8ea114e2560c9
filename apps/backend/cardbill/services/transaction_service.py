from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from cardbill import models
from cardbill.core.exceptions import (
    InsufficientLimitError,
    InternalError,
    InvalidOperationError,
    NotFoundError,
    service_errors,
)
from cardbill.models import to_decimal
from cardbill.services.invoice_limit_service import InvoiceLimitService, LimitValidation

logger = logging.getLogger(__name__)

# Columns copied into the merged view used for validation on update.
_TXN_FIELDS = (
    "description",
    "amount",
    "type",
    "status",
    "transaction_date",
    "due_date",
    "category_id",
    "payment_method_id",
    "invoice_id",
    "parent_transaction_id",
    "installments_current",
    "installments_total",
    "notes",
    "tags",
)
_REQUIRED_FIELDS = ("description", "amount", "type", "status", "transaction_date")


def _as_dict(payload: BaseModel | dict[str, Any], *, exclude_unset: bool = False) -> dict[str, Any]:
    if isinstance(payload, BaseModel):
        return payload.model_dump(exclude_unset=exclude_unset)
    return dict(payload)


class TransactionService:
    """Transactions and their coupling to invoice credit limits.

    An active, non-canceled EXPENSE bound to an invoice holds a reservation of
    its full amount on that invoice. Every write below keeps that statement
    true by reserving/releasing inside the same database transaction as the
    row change.
    """

    def __init__(self, db: Session) -> None:
        self.db = db
        self.limits = InvoiceLimitService(db)

    # ---- Reads -----------------------------------------------------------
    def _get(self, user_id: int, txn_id: int) -> models.Transaction:
        tx = (
            self.db.query(models.Transaction)
            .filter(models.Transaction.id == txn_id, models.Transaction.user_id == user_id)
            .first()
        )
        if not tx:
            raise NotFoundError("Transaction not found")
        return tx

    def find_one(self, user_id: int, txn_id: int) -> models.Transaction:
        with service_errors("Error fetching transaction", self.db):
            return self._get(user_id, txn_id)

    def find_all(
        self,
        user_id: int,
        *,
        include_inactive: bool = False,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[models.Transaction], int]:
        with service_errors("Error fetching transactions", self.db):
            q = self.db.query(models.Transaction).filter(models.Transaction.user_id == user_id)
            if not include_inactive:
                q = q.filter(models.Transaction.is_active.is_(True))
            total = q.count()
            rows = (
                q.order_by(models.Transaction.transaction_date.desc(), models.Transaction.id.desc())
                .offset((max(page, 1) - 1) * limit)
                .limit(limit)
                .all()
            )
            return rows, total

    def find_by_invoice(self, user_id: int, invoice_id: int) -> list[models.Transaction]:
        with service_errors("Error fetching invoice transactions", self.db):
            return (
                self.db.query(models.Transaction)
                .filter(
                    models.Transaction.user_id == user_id,
                    models.Transaction.invoice_id == invoice_id,
                    models.Transaction.is_active.is_(True),
                )
                .order_by(models.Transaction.transaction_date.desc())
                .all()
            )

    # ---- Validation ------------------------------------------------------
    def _validate(self, data: dict[str, Any]) -> None:
        for field in _REQUIRED_FIELDS:
            if data.get(field) is None:
                raise InvalidOperationError(f"'{field}' is required")

        amount = to_decimal(data.get("amount"))
        if amount <= 0:
            raise InvalidOperationError("Transaction amount must be greater than zero")

        transaction_date = data.get("transaction_date")
        due_date = data.get("due_date")
        if due_date and transaction_date and due_date < transaction_date:
            raise InvalidOperationError("Due date cannot be earlier than the transaction date")

        current = data.get("installments_current") or 1
        total = data.get("installments_total") or 1
        if current > total:
            raise InvalidOperationError("Current installment cannot exceed the total number of installments")

        if data.get("invoice_id") and not data.get("payment_method_id"):
            raise InvalidOperationError("A payment method is required when an invoice is given")

        if data.get("invoice_id") and models.TxnType(data["type"]) == models.TxnType.INCOME:
            raise InvalidOperationError("Income transactions cannot be billed to a card invoice")

    def _check_references(self, user_id: int, data: dict[str, Any]) -> None:
        payment_method: models.PaymentMethod | None = None
        if data.get("payment_method_id"):
            payment_method = (
                self.db.query(models.PaymentMethod)
                .filter(
                    models.PaymentMethod.id == data["payment_method_id"],
                    models.PaymentMethod.user_id == user_id,
                    models.PaymentMethod.is_active.is_(True),
                )
                .first()
            )
            if not payment_method:
                raise NotFoundError("Payment method not found")

        if data.get("invoice_id"):
            invoice = (
                self.db.query(models.Invoice)
                .filter(
                    models.Invoice.id == data["invoice_id"],
                    models.Invoice.user_id == user_id,
                    models.Invoice.is_active.is_(True),
                )
                .first()
            )
            if not invoice:
                raise NotFoundError("Invoice not found")
            if payment_method is not None:
                if not payment_method.is_credit_card():
                    raise InvalidOperationError("Only credit cards can be billed to an invoice")
                if payment_method.invoice_id is not None and payment_method.invoice_id != invoice.id:
                    raise InvalidOperationError("Payment method is attached to a different invoice")

        if data.get("category_id"):
            exists = (
                self.db.query(models.Category.id)
                .filter(
                    models.Category.id == data["category_id"],
                    models.Category.user_id == user_id,
                    models.Category.is_active.is_(True),
                )
                .first()
            )
            if not exists:
                raise NotFoundError("Category not found")

        if data.get("parent_transaction_id"):
            exists = (
                self.db.query(models.Transaction.id)
                .filter(
                    models.Transaction.id == data["parent_transaction_id"],
                    models.Transaction.user_id == user_id,
                    models.Transaction.is_active.is_(True),
                )
                .first()
            )
            if not exists:
                raise NotFoundError("Parent transaction not found")

    @staticmethod
    def _limit_error(check: LimitValidation, amount: Decimal) -> Exception:
        message = check.message or "Transaction rejected by invoice limit"
        if check.reason == "not_found":
            return NotFoundError(message)
        if check.reason == "insufficient":
            return InsufficientLimitError(check.available_limit or Decimal("0"), amount, message)
        if check.reason == "no_limit":
            return InvalidOperationError(message)
        return InternalError(message)

    # ---- Ledger helpers --------------------------------------------------
    def _release(self, tx: models.Transaction, user_id: int, *, invoice_id: int | None = None, amount: Any = None) -> None:
        target = invoice_id or tx.invoice_id
        try:
            self.limits.release_limit(target, amount if amount is not None else tx.amount, user_id=user_id, commit=False)
        except NotFoundError:
            # Deactivated invoices keep their ledger frozen.
            logger.warning("Skipping limit release for transaction %s: invoice %s is inactive", tx.id, target)

    # ---- Writes ----------------------------------------------------------
    def create(self, user_id: int, payload: BaseModel | dict[str, Any]) -> models.Transaction:
        with service_errors("Error creating transaction", self.db):
            data = _as_dict(payload)
            data.setdefault("status", models.TransactionStatus.COMPLETED)
            self._validate(data)
            self._check_references(user_id, data)

            txn_type = models.TxnType(data["type"])
            amount = to_decimal(data["amount"])
            status = models.TransactionStatus(data["status"])
            if data.get("invoice_id") and status != models.TransactionStatus.CANCELED:
                check = self.limits.validate_transaction_with_limit(
                    data["invoice_id"], amount, txn_type, user_id=user_id
                )
                if not check.can_proceed:
                    raise self._limit_error(check, amount)

            tx = models.Transaction(user_id=user_id, **data)
            self.db.add(tx)
            try:
                self.db.flush()
                if tx.holds_reservation:
                    self.limits.use_limit(tx.invoice_id, amount, user_id=user_id, commit=False)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
            self.db.refresh(tx)
            return tx

    def update(self, user_id: int, txn_id: int, payload: BaseModel | dict[str, Any]) -> models.Transaction:
        with service_errors("Error updating transaction", self.db):
            tx = self._get(user_id, txn_id)
            changes = _as_dict(payload, exclude_unset=True)
            if not changes:
                return tx

            merged = {field: getattr(tx, field) for field in _TXN_FIELDS}
            merged.update(changes)
            self._validate(merged)
            self._check_references(user_id, merged)

            held_before = tx.holds_reservation
            old_invoice_id = tx.invoice_id
            old_amount = to_decimal(tx.amount)

            try:
                for key, value in changes.items():
                    setattr(tx, key, value)
                self.db.flush()

                affects_ledger = (
                    held_before != tx.holds_reservation
                    or old_invoice_id != tx.invoice_id
                    or old_amount != to_decimal(tx.amount)
                )
                if affects_ledger:
                    if held_before:
                        self._release(tx, user_id, invoice_id=old_invoice_id, amount=old_amount)
                    if tx.holds_reservation:
                        self.limits.use_limit(tx.invoice_id, tx.amount, user_id=user_id, commit=False)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
            self.db.refresh(tx)
            return tx

    def remove(self, user_id: int, txn_id: int) -> None:
        """Soft delete; the transaction and its installments give their limit back."""
        with service_errors("Error removing transaction", self.db):
            tx = self._get(user_id, txn_id)
            if not tx.is_active:
                return
            rows = [tx] + [child for child in tx.child_transactions if child.is_active]
            try:
                for row in rows:
                    if row.holds_reservation:
                        self._release(row, user_id)
                    row.is_active = False
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

    def mark_as_canceled(self, user_id: int, txn_id: int) -> models.Transaction:
        with service_errors("Error canceling transaction", self.db):
            tx = self._get(user_id, txn_id)
            if tx.is_canceled():
                return tx
            try:
                if tx.holds_reservation:
                    self._release(tx, user_id)
                tx.status = models.TransactionStatus.CANCELED
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
            self.db.refresh(tx)
            return tx

    def mark_as_completed(self, user_id: int, txn_id: int) -> models.Transaction:
        with service_errors("Error completing transaction", self.db):
            tx = self._get(user_id, txn_id)
            if tx.is_completed():
                return tx
            was_canceled = tx.is_canceled()
            try:
                tx.status = models.TransactionStatus.COMPLETED
                self.db.flush()
                # A canceled expense gave its limit back; completing it takes it again.
                if was_canceled and tx.holds_reservation:
                    self.limits.use_limit(tx.invoice_id, tx.amount, user_id=user_id, commit=False)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
            self.db.refresh(tx)
            return tx
