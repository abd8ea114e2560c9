from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from cardbill.core.database import get_db
from cardbill.core.deps import get_current_user
from cardbill.schemas import (
    TransactionCreate,
    TransactionListOut,
    TransactionOut,
    TransactionUpdate,
)
from cardbill.services import TransactionService

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.post("", response_model=TransactionOut, status_code=201)
def create_transaction(payload: TransactionCreate, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return TransactionService(db).create(current_user.id, payload)


@router.get("", response_model=TransactionListOut)
def list_transactions(
    response: Response,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    rows, total = TransactionService(db).find_all(
        current_user.id, include_inactive=include_inactive, page=page, limit=page_size
    )
    response.headers["X-Total-Count"] = str(total)
    return {"transactions": rows, "total": total}


@router.get("/{txn_id}", response_model=TransactionOut)
def get_transaction(txn_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return TransactionService(db).find_one(current_user.id, txn_id)


@router.patch("/{txn_id}", response_model=TransactionOut)
def update_transaction(
    txn_id: int,
    payload: TransactionUpdate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return TransactionService(db).update(current_user.id, txn_id, payload)


@router.delete("/{txn_id}", status_code=204)
def delete_transaction(txn_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    TransactionService(db).remove(current_user.id, txn_id)
    return None


@router.patch("/{txn_id}/cancel", response_model=TransactionOut)
def cancel_transaction(txn_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return TransactionService(db).mark_as_canceled(current_user.id, txn_id)


@router.patch("/{txn_id}/complete", response_model=TransactionOut)
def complete_transaction(txn_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return TransactionService(db).mark_as_completed(current_user.id, txn_id)
