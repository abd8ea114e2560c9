from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from cardbill import models
from cardbill.core.exceptions import InvalidOperationError, NotFoundError, service_errors

logger = logging.getLogger(__name__)


class PaymentMethodService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _get(self, user_id: int, payment_method_id: int) -> models.PaymentMethod:
        row = (
            self.db.query(models.PaymentMethod)
            .filter(
                models.PaymentMethod.id == payment_method_id,
                models.PaymentMethod.user_id == user_id,
            )
            .first()
        )
        if not row:
            raise NotFoundError("Payment method not found")
        return row

    def _check_invoice(self, user_id: int, pm_type: models.PaymentMethodType, invoice_id: Optional[int]) -> None:
        if invoice_id is None:
            return
        if models.PaymentMethodType(pm_type) != models.PaymentMethodType.CREDIT_CARD:
            raise InvalidOperationError("Only credit cards can be linked to an invoice")
        exists = (
            self.db.query(models.Invoice.id)
            .filter(
                models.Invoice.id == invoice_id,
                models.Invoice.user_id == user_id,
                models.Invoice.is_active.is_(True),
            )
            .first()
        )
        if not exists:
            raise NotFoundError("Invoice not found")

    def create(self, user_id: int, payload: BaseModel | dict[str, Any]) -> models.PaymentMethod:
        with service_errors("Error creating payment method", self.db):
            data = payload.model_dump() if isinstance(payload, BaseModel) else dict(payload)
            self._check_invoice(user_id, data["type"], data.get("invoice_id"))
            row = models.PaymentMethod(user_id=user_id, **data)
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            return row

    def find_all(self, user_id: int, *, include_inactive: bool = False) -> list[models.PaymentMethod]:
        with service_errors("Error fetching payment methods", self.db):
            q = self.db.query(models.PaymentMethod).filter(models.PaymentMethod.user_id == user_id)
            if not include_inactive:
                q = q.filter(models.PaymentMethod.is_active.is_(True))
            return q.order_by(models.PaymentMethod.order, models.PaymentMethod.name).all()

    def find_one(self, user_id: int, payment_method_id: int) -> models.PaymentMethod:
        with service_errors("Error fetching payment method", self.db):
            return self._get(user_id, payment_method_id)

    def update(self, user_id: int, payment_method_id: int, payload: BaseModel | dict[str, Any]) -> models.PaymentMethod:
        with service_errors("Error updating payment method", self.db):
            row = self._get(user_id, payment_method_id)
            patch = payload.model_dump(exclude_unset=True) if isinstance(payload, BaseModel) else dict(payload)
            if "invoice_id" in patch:
                self._check_invoice(user_id, row.type, patch["invoice_id"])
            for key, value in patch.items():
                setattr(row, key, value)
            self.db.commit()
            self.db.refresh(row)
            return row

    def remove(self, user_id: int, payment_method_id: int) -> None:
        """Soft delete; the card also lets go of its invoice."""
        with service_errors("Error removing payment method", self.db):
            row = self._get(user_id, payment_method_id)
            row.is_active = False
            row.invoice_id = None
            self.db.commit()
            logger.info("Payment method %s deactivated", row.id, extra={"payment_method_id": row.id})
