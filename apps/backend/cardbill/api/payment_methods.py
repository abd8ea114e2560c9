from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cardbill.core.database import get_db
from cardbill.core.deps import get_current_user
from cardbill.schemas import PaymentMethodCreate, PaymentMethodOut, PaymentMethodUpdate
from cardbill.services import PaymentMethodService

router = APIRouter(prefix="/payment-methods", tags=["payment-methods"])


@router.post("", response_model=PaymentMethodOut, status_code=201)
def create_payment_method(payload: PaymentMethodCreate, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return PaymentMethodService(db).create(current_user.id, payload)


@router.get("", response_model=list[PaymentMethodOut])
def list_payment_methods(
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return PaymentMethodService(db).find_all(current_user.id, include_inactive=include_inactive)


@router.get("/{payment_method_id}", response_model=PaymentMethodOut)
def get_payment_method(payment_method_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return PaymentMethodService(db).find_one(current_user.id, payment_method_id)


@router.patch("/{payment_method_id}", response_model=PaymentMethodOut)
def update_payment_method(
    payment_method_id: int,
    payload: PaymentMethodUpdate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return PaymentMethodService(db).update(current_user.id, payment_method_id, payload)


@router.delete("/{payment_method_id}", status_code=204)
def delete_payment_method(payment_method_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    PaymentMethodService(db).remove(current_user.id, payment_method_id)
    return None
