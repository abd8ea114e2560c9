from __future__ import annotations

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cardbill import models
from cardbill.core.database import get_db
from cardbill.core.deps import get_current_user
from cardbill.schemas import (
    CreditLimitUpdate,
    InvoiceCloseRequest,
    InvoiceCreate,
    InvoiceLimitOverviewOut,
    InvoiceOut,
    InvoiceUpdate,
    LimitInfoOut,
    LimitStatisticsOut,
    SchedulerRunOut,
    TransactionOut,
)
from cardbill.services import (
    InvoiceLimitService,
    InvoiceSchedulerService,
    InvoiceService,
    TransactionService,
)

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.post("", response_model=InvoiceOut, status_code=201)
def create_invoice(payload: InvoiceCreate, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return InvoiceService(db).create(current_user.id, payload)


@router.get("", response_model=list[InvoiceOut])
def list_invoices(
    include_inactive: bool = Query(False, description="Include soft-deleted invoices"),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return InvoiceService(db).find_all(current_user.id, include_inactive=include_inactive)


@router.post("/defaults", response_model=list[InvoiceOut], status_code=201)
def create_default_invoices(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return InvoiceService(db).create_default_invoices(current_user.id)


@router.get("/status/{status}", response_model=list[InvoiceOut])
def list_invoices_by_status(
    status: models.InvoiceStatus,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return InvoiceService(db).find_by_status(current_user.id, status)


@router.get("/user/limit-overview", response_model=list[InvoiceLimitOverviewOut])
def user_limit_overview(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return InvoiceLimitService(db).get_user_invoices_with_limit_info(current_user.id)


@router.get("/user/limit-statistics", response_model=LimitStatisticsOut)
def user_limit_statistics(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return InvoiceLimitService(db).get_limit_statistics(current_user.id)


@router.post("/scheduler/run", response_model=SchedulerRunOut)
def run_invoice_processing(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    result = InvoiceSchedulerService(db).process_invoices()
    return asdict(result)


@router.get("/{invoice_id}", response_model=InvoiceOut)
def get_invoice(invoice_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return InvoiceService(db).find_one(current_user.id, invoice_id)


@router.patch("/{invoice_id}", response_model=InvoiceOut)
def update_invoice(
    invoice_id: int,
    payload: InvoiceUpdate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return InvoiceService(db).update(current_user.id, invoice_id, payload)


@router.delete("/{invoice_id}", status_code=204)
def delete_invoice(invoice_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    InvoiceService(db).remove(current_user.id, invoice_id)
    return None


@router.patch("/{invoice_id}/close", response_model=InvoiceOut)
def close_invoice(
    invoice_id: int,
    payload: Optional[InvoiceCloseRequest] = None,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    total_amount = payload.total_amount if payload else None
    return InvoiceService(db).close_invoice(current_user.id, invoice_id, total_amount)


@router.patch("/{invoice_id}/pay", response_model=InvoiceOut)
def pay_invoice(invoice_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return InvoiceService(db).pay_invoice(current_user.id, invoice_id)


@router.get("/{invoice_id}/limit-info", response_model=LimitInfoOut)
def invoice_limit_info(invoice_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return InvoiceLimitService(db).get_limit_info(invoice_id, user_id=current_user.id)


@router.patch("/{invoice_id}/credit-limit", response_model=InvoiceOut)
def update_credit_limit(
    invoice_id: int,
    payload: CreditLimitUpdate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    invoice = InvoiceLimitService(db).update_credit_limit(invoice_id, payload.credit_limit, user_id=current_user.id)
    # payment_method_ids needs the relationship loaded
    return InvoiceService(db).find_one(current_user.id, invoice.id)


@router.get("/{invoice_id}/transactions", response_model=list[TransactionOut])
def invoice_transactions(invoice_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    InvoiceService(db).find_one(current_user.id, invoice_id)
    return TransactionService(db).find_by_invoice(current_user.id, invoice_id)
