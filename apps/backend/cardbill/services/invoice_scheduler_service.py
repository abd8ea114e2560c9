from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from cardbill import models
from cardbill.core.config import settings
from cardbill.core.database import SessionLocal
from cardbill.services.invoice_service import compute_invoice_total
from cardbill.utils.dates import compute_due_date, local_today, next_month_label, next_period_start

logger = logging.getLogger(__name__)


@dataclass
class SchedulerFailure:
    invoice_id: int
    phase: str
    error: str


@dataclass
class SchedulerRunResult:
    run_date: date
    closed: int = 0
    created: int = 0
    overdue: int = 0
    failures: list[SchedulerFailure] = field(default_factory=list)


class InvoiceSchedulerService:
    """Daily invoice lifecycle: close due cycles, open next periods, flag overdue.

    Every invoice is handled in its own unit of work. A failure is rolled
    back, logged and recorded in the run result, and the loop moves on.
    Successors carry the first day of their billing period in
    ``period_start``; until that day arrives they are neither closed nor
    given successors of their own, which keeps reruns idempotent.
    """

    def __init__(
        self,
        db: Session,
        *,
        carry_over_credit_limit: Optional[bool] = None,
        timezone: Optional[str] = None,
    ) -> None:
        self.db = db
        self.carry_over_credit_limit = (
            settings.CARRY_OVER_CREDIT_LIMIT if carry_over_credit_limit is None else carry_over_credit_limit
        )
        self.timezone = timezone or settings.TIMEZONE

    # ---- Entry point -----------------------------------------------------
    def process_invoices(self, today: Optional[date] = None) -> SchedulerRunResult:
        today = today or local_today(self.timezone)
        result = SchedulerRunResult(run_date=today)
        logger.info("Invoice processing started for %s", today.isoformat(), extra={"step": "scheduler_start"})

        in_current_period = or_(models.Invoice.period_start.is_(None), models.Invoice.period_start <= today)

        # Phase 1: close
        ids = [
            row.id
            for row in self.db.query(models.Invoice.id)
            .filter(
                models.Invoice.is_active.is_(True),
                models.Invoice.status == models.InvoiceStatus.OPEN,
                models.Invoice.closing_day == today.day,
                in_current_period,
            )
            .order_by(models.Invoice.id)
            .all()
        ]
        result.closed = self._run_phase("close", ids, lambda invoice: self._close(invoice, today), result)

        # Phase 2: successors, only for invoices that exist before the phase starts
        ids = [
            row.id
            for row in self.db.query(models.Invoice.id)
            .filter(models.Invoice.is_active.is_(True), in_current_period)
            .order_by(models.Invoice.id)
            .all()
        ]
        result.created = self._run_phase("successor", ids, lambda invoice: self._spawn_successor(invoice, today), result)

        # Phase 3: overdue
        ids = [
            row.id
            for row in self.db.query(models.Invoice.id)
            .filter(
                models.Invoice.is_active.is_(True),
                models.Invoice.status == models.InvoiceStatus.CLOSED,
                models.Invoice.due_date.is_not(None),
                models.Invoice.due_date <= today,
            )
            .order_by(models.Invoice.id)
            .all()
        ]
        result.overdue = self._run_phase("overdue", ids, self._mark_overdue, result)

        logger.info(
            "Invoice processing finished: %s closed, %s created, %s overdue, %s failures",
            result.closed,
            result.created,
            result.overdue,
            len(result.failures),
            extra={"step": "scheduler_done"},
        )
        return result

    def _run_phase(
        self,
        phase: str,
        invoice_ids: list[int],
        handler: Callable[[models.Invoice], bool],
        result: SchedulerRunResult,
    ) -> int:
        done = 0
        for invoice_id in invoice_ids:
            try:
                invoice = self.db.get(models.Invoice, invoice_id)
                if invoice is None:
                    continue
                if handler(invoice):
                    self.db.commit()
                    done += 1
            except Exception as exc:
                self.db.rollback()
                logger.exception(
                    "Invoice %s failed during %s: %s",
                    invoice_id,
                    phase,
                    exc,
                    extra={"invoice_id": invoice_id, "step": phase},
                )
                result.failures.append(SchedulerFailure(invoice_id=invoice_id, phase=phase, error=str(exc)))
        return done

    # ---- Per-invoice steps -----------------------------------------------
    def _close(self, invoice: models.Invoice, today: date) -> bool:
        if not invoice.is_open():
            return False
        total = compute_invoice_total(self.db, invoice.id)
        invoice.close(today, compute_due_date(today, invoice.due_day), total)
        logger.info(
            "Invoice %s (%s) closed with total %s, due %s",
            invoice.id,
            invoice.name,
            total,
            invoice.due_date,
            extra={"invoice_id": invoice.id, "step": "close"},
        )
        return True

    def _spawn_successor(self, invoice: models.Invoice, today: date) -> bool:
        name = f"{invoice.name} {next_month_label(today)}"
        exists = (
            self.db.query(models.Invoice.id)
            .filter(
                models.Invoice.user_id == invoice.user_id,
                models.Invoice.name == name,
                models.Invoice.is_active.is_(True),
            )
            .first()
        )
        if exists:
            return False
        successor = models.Invoice(
            user_id=invoice.user_id,
            name=name,
            description=invoice.description,
            closing_day=invoice.closing_day,
            due_day=invoice.due_day,
            color=invoice.color,
            icon=invoice.icon,
            order=invoice.order,
            status=models.InvoiceStatus.OPEN,
            period_start=next_period_start(today),
            used_limit=models.ZERO,
            credit_limit=invoice.credit_limit if self.carry_over_credit_limit else None,
        )
        self.db.add(successor)
        self.db.flush()
        logger.info(
            "Invoice %s opened as successor of %s",
            successor.id,
            invoice.id,
            extra={"invoice_id": successor.id, "step": "successor"},
        )
        return True

    def _mark_overdue(self, invoice: models.Invoice) -> bool:
        if not invoice.is_closed():
            return False
        invoice.mark_overdue()
        logger.info("Invoice %s (%s) is overdue", invoice.id, invoice.name, extra={"invoice_id": invoice.id, "step": "overdue"})
        return True


def run_daily() -> SchedulerRunResult:
    """Cron entry point: one session for the whole run."""
    db = SessionLocal()
    try:
        return InvoiceSchedulerService(db).process_invoices()
    finally:
        db.close()
