from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from cardbill import models
from cardbill.core.config import settings
from cardbill.core.exceptions import (
    ConflictError,
    InvalidOperationError,
    NotFoundError,
    service_errors,
)
from cardbill.models import to_decimal
from cardbill.utils.dates import compute_due_date, local_today

logger = logging.getLogger(__name__)

DEFAULT_INVOICES: tuple[dict[str, Any], ...] = (
    {
        "name": "Nubank Invoice",
        "description": "Consolidated invoice for Nubank cards",
        "closing_day": 5,
        "due_day": 10,
        "color": "#8B5CF6",
        "icon": "📄",
        "order": 1,
    },
    {
        "name": "Inter Invoice",
        "description": "Consolidated invoice for Inter cards",
        "closing_day": 8,
        "due_day": 13,
        "color": "#FF6B6B",
        "icon": "📄",
        "order": 2,
    },
)


def compute_invoice_total(db: Session, invoice_id: int) -> Decimal:
    """Sum of the live expenses billed to an invoice."""
    total = (
        db.query(func.coalesce(func.sum(models.Transaction.amount), 0))
        .filter(
            models.Transaction.invoice_id == invoice_id,
            models.Transaction.is_active.is_(True),
            models.Transaction.type == models.TxnType.EXPENSE,
            models.Transaction.status != models.TransactionStatus.CANCELED,
        )
        .scalar()
    )
    return to_decimal(total).quantize(Decimal("0.01"))


class InvoiceService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _query(self, user_id: int):
        return (
            self.db.query(models.Invoice)
            .options(selectinload(models.Invoice.payment_methods))
            .filter(models.Invoice.user_id == user_id)
        )

    def _get(self, user_id: int, invoice_id: int) -> models.Invoice:
        row = self._query(user_id).filter(models.Invoice.id == invoice_id).first()
        if not row:
            raise NotFoundError("Invoice not found")
        return row

    def _ensure_unique_name(self, user_id: int, name: str, *, exclude_id: Optional[int] = None) -> None:
        q = self.db.query(models.Invoice.id).filter(
            models.Invoice.user_id == user_id,
            models.Invoice.name == name,
            models.Invoice.is_active.is_(True),
        )
        if exclude_id is not None:
            q = q.filter(models.Invoice.id != exclude_id)
        if q.first():
            raise ConflictError("An invoice with this name already exists")

    # ---- CRUD ------------------------------------------------------------
    def create(self, user_id: int, payload: BaseModel | dict[str, Any]) -> models.Invoice:
        with service_errors("Error creating invoice", self.db):
            data = payload.model_dump() if isinstance(payload, BaseModel) else dict(payload)
            self._ensure_unique_name(user_id, data["name"])
            row = models.Invoice(user_id=user_id, **data)
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            logger.info("Invoice created: %s (%s)", row.id, row.name, extra={"invoice_id": row.id})
            return row

    def find_all(self, user_id: int, *, include_inactive: bool = False) -> list[models.Invoice]:
        with service_errors("Error fetching invoices", self.db):
            q = self._query(user_id)
            if not include_inactive:
                q = q.filter(models.Invoice.is_active.is_(True))
            return q.order_by(models.Invoice.order, models.Invoice.name).all()

    def find_one(self, user_id: int, invoice_id: int) -> models.Invoice:
        with service_errors("Error fetching invoice", self.db):
            return self._get(user_id, invoice_id)

    def find_by_status(self, user_id: int, status: models.InvoiceStatus) -> list[models.Invoice]:
        with service_errors("Error fetching invoices by status", self.db):
            return (
                self._query(user_id)
                .filter(models.Invoice.status == status, models.Invoice.is_active.is_(True))
                .order_by(models.Invoice.due_date, models.Invoice.id)
                .all()
            )

    def update(self, user_id: int, invoice_id: int, payload: BaseModel | dict[str, Any]) -> models.Invoice:
        with service_errors("Error updating invoice", self.db):
            row = self._get(user_id, invoice_id)
            patch = payload.model_dump(exclude_unset=True) if isinstance(payload, BaseModel) else dict(payload)
            if not patch:
                return row
            for locked in ("credit_limit", "used_limit", "status"):
                if locked in patch:
                    raise InvalidOperationError(f"'{locked}' cannot be changed through invoice update")
            name = patch.get("name")
            if name and name != row.name:
                self._ensure_unique_name(user_id, name, exclude_id=row.id)
            for key, value in patch.items():
                setattr(row, key, value)
            self.db.commit()
            self.db.refresh(row)
            return row

    def remove(self, user_id: int, invoice_id: int) -> None:
        """Soft delete, refused while payment methods still point at the invoice."""
        with service_errors("Error removing invoice", self.db):
            row = self._get(user_id, invoice_id)
            if row.payment_method_ids:
                raise ConflictError("Cannot delete an invoice with linked payment methods")
            row.is_active = False
            self.db.commit()

    # ---- Manual lifecycle ------------------------------------------------
    def close_invoice(
        self,
        user_id: int,
        invoice_id: int,
        total_amount: Optional[Decimal] = None,
        *,
        today=None,
    ) -> models.Invoice:
        """Close an open invoice ahead of the daily processing."""
        with service_errors("Error closing invoice", self.db):
            row = self._get(user_id, invoice_id)
            if not row.is_active or not row.is_open():
                raise InvalidOperationError("Invoice cannot be closed at the moment")
            closing_date = today or local_today(settings.TIMEZONE)
            if total_amount is None:
                total_amount = compute_invoice_total(self.db, row.id)
            row.close(closing_date, compute_due_date(closing_date, row.due_day), total_amount)
            self.db.commit()
            self.db.refresh(row)
            return row

    def pay_invoice(self, user_id: int, invoice_id: int, *, today=None) -> models.Invoice:
        with service_errors("Error paying invoice", self.db):
            row = self._get(user_id, invoice_id)
            if not row.can_pay():
                raise InvalidOperationError("Invoice cannot be paid at the moment")
            row.mark_paid(today or local_today(settings.TIMEZONE))
            self.db.commit()
            self.db.refresh(row)
            return row

    def create_default_invoices(self, user_id: int) -> list[models.Invoice]:
        """Create the starter invoices; names already in use are skipped."""
        created: list[models.Invoice] = []
        for data in DEFAULT_INVOICES:
            try:
                created.append(self.create(user_id, data))
            except ConflictError:
                continue
        return created
