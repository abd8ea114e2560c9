from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from cardbill import models
from cardbill.services.invoice_scheduler_service import InvoiceSchedulerService
from cardbill.services.transaction_service import TransactionService


def _active_names(db_session) -> set[str]:
    return {row.name for row in db_session.query(models.Invoice).filter_by(is_active=True)}


def test_closes_invoice_on_closing_day(db_session, demo_user, make_invoice, make_card):
    invoice = make_invoice(name="Nubank", closing_day=5, due_day=10)
    card = make_card(invoice)
    svc = TransactionService(db_session)
    for amount in (Decimal("30.50"), Decimal("19.50")):
        svc.create(
            demo_user.id,
            {
                "description": "Lunch",
                "amount": amount,
                "type": models.TxnType.EXPENSE,
                "transaction_date": date(2025, 3, 1),
                "invoice_id": invoice.id,
                "payment_method_id": card.id,
            },
        )
    canceled = svc.create(
        demo_user.id,
        {
            "description": "Refunded",
            "amount": Decimal("99"),
            "type": models.TxnType.EXPENSE,
            "transaction_date": date(2025, 3, 2),
            "invoice_id": invoice.id,
            "payment_method_id": card.id,
        },
    )
    svc.mark_as_canceled(demo_user.id, canceled.id)

    result = InvoiceSchedulerService(db_session).process_invoices(today=date(2025, 3, 5))

    db_session.refresh(invoice)
    assert result.closed == 1
    assert invoice.status == models.InvoiceStatus.CLOSED
    assert invoice.closing_date == date(2025, 3, 5)
    assert invoice.due_date == date(2025, 4, 10)
    assert invoice.total_amount == Decimal("50")


def test_due_date_clamps_to_month_end(db_session, make_invoice):
    invoice = make_invoice(name="Late cycle", closing_day=31, due_day=31)

    InvoiceSchedulerService(db_session).process_invoices(today=date(2025, 5, 31))

    db_session.refresh(invoice)
    assert invoice.status == models.InvoiceStatus.CLOSED
    assert invoice.due_date == date(2025, 6, 30)
    assert invoice.total_amount == Decimal("0")


def test_other_closing_days_stay_open(db_session, make_invoice):
    invoice = make_invoice(closing_day=20)
    result = InvoiceSchedulerService(db_session).process_invoices(today=date(2025, 3, 5))
    db_session.refresh(invoice)
    assert result.closed == 0
    assert invoice.status == models.InvoiceStatus.OPEN


def test_marks_past_due_closed_invoice_overdue(db_session, make_invoice):
    today = date(2025, 4, 11)
    past_due = make_invoice(
        name="Past due",
        closing_day=5,
        status=models.InvoiceStatus.CLOSED,
        closing_date=date(2025, 3, 5),
        due_date=today - timedelta(days=1),
    )
    due_today = make_invoice(
        name="Due today",
        closing_day=5,
        status=models.InvoiceStatus.CLOSED,
        closing_date=date(2025, 3, 5),
        due_date=today,
    )
    not_yet = make_invoice(
        name="Not yet",
        closing_day=5,
        status=models.InvoiceStatus.CLOSED,
        closing_date=date(2025, 3, 5),
        due_date=today + timedelta(days=1),
    )
    paid = make_invoice(
        name="Paid",
        closing_day=5,
        status=models.InvoiceStatus.PAID,
        due_date=today - timedelta(days=3),
    )

    result = InvoiceSchedulerService(db_session).process_invoices(today=today)

    for inv in (past_due, due_today, not_yet, paid):
        db_session.refresh(inv)
    assert result.overdue == 2
    assert past_due.status == models.InvoiceStatus.OVERDUE
    assert due_today.status == models.InvoiceStatus.OVERDUE
    assert not_yet.status == models.InvoiceStatus.CLOSED
    assert paid.status == models.InvoiceStatus.PAID


def test_spawns_successor_for_next_month(db_session, make_invoice):
    original = make_invoice(
        name="Inter",
        description="Inter cards",
        closing_day=8,
        due_day=13,
        color="#FF6B6B",
        icon="🧾",
        order=4,
        credit_limit=Decimal("800"),
        used_limit=Decimal("300"),
    )

    result = InvoiceSchedulerService(db_session).process_invoices(today=date(2025, 10, 18))

    assert result.created == 1
    successor = db_session.query(models.Invoice).filter_by(name="Inter November 2025").one()
    assert successor.id != original.id
    assert successor.status == models.InvoiceStatus.OPEN
    assert (successor.closing_day, successor.due_day) == (8, 13)
    assert (successor.color, successor.icon, successor.order) == ("#FF6B6B", "🧾", 4)
    assert successor.description == "Inter cards"
    assert successor.used_limit == Decimal("0")
    assert successor.credit_limit is None


def test_successor_carries_credit_limit_when_enabled(db_session, make_invoice):
    make_invoice(name="Inter", credit_limit=Decimal("800"), used_limit=Decimal("300"))

    InvoiceSchedulerService(db_session, carry_over_credit_limit=True).process_invoices(today=date(2025, 12, 2))

    successor = db_session.query(models.Invoice).filter_by(name="Inter January 2026").one()
    assert successor.credit_limit == Decimal("800")
    assert successor.used_limit == Decimal("0")


def test_rerun_on_same_day_changes_nothing(db_session, make_invoice):
    make_invoice(name="Nubank", closing_day=5, due_day=10)
    make_invoice(name="Inter", closing_day=8, due_day=13)
    svc = InvoiceSchedulerService(db_session)

    first = svc.process_invoices(today=date(2025, 3, 5))
    names_after_first = _active_names(db_session)
    second = svc.process_invoices(today=date(2025, 3, 5))

    assert (first.closed, first.created) == (1, 2)
    assert (second.closed, second.created, second.overdue) == (0, 0, 0)
    assert _active_names(db_session) == names_after_first == {
        "Nubank",
        "Inter",
        "Nubank April 2025",
        "Inter April 2025",
    }
    successor = db_session.query(models.Invoice).filter_by(name="Nubank April 2025").one()
    assert successor.status == models.InvoiceStatus.OPEN


def test_user_invoice_named_like_next_period_still_closes(db_session, make_invoice):
    trip = make_invoice(name="Trip November 2025", closing_day=18, due_day=25)

    result = InvoiceSchedulerService(db_session).process_invoices(today=date(2025, 10, 18))

    db_session.refresh(trip)
    assert result.closed == 1
    assert trip.status == models.InvoiceStatus.CLOSED
    assert trip.due_date == date(2025, 11, 25)
    assert result.created == 1
    assert db_session.query(models.Invoice).filter_by(name="Trip November 2025 November 2025").count() == 1


def test_successor_waits_for_its_period_then_closes(db_session, make_invoice):
    make_invoice(name="Nubank", closing_day=5, due_day=10)
    svc = InvoiceSchedulerService(db_session)

    svc.process_invoices(today=date(2025, 3, 5))
    successor = db_session.query(models.Invoice).filter_by(name="Nubank April 2025").one()
    assert successor.period_start == date(2025, 4, 1)

    # a later day in March does not touch the April invoice
    svc.process_invoices(today=date(2025, 3, 20))
    db_session.refresh(successor)
    assert successor.status == models.InvoiceStatus.OPEN
    assert db_session.query(models.Invoice).filter_by(name="Nubank April 2025 April 2025").count() == 0

    result = svc.process_invoices(today=date(2025, 4, 5))
    db_session.refresh(successor)
    assert successor.status == models.InvoiceStatus.CLOSED
    assert successor.due_date == date(2025, 5, 10)
    assert result.closed == 1


def test_inactive_invoices_are_ignored(db_session, make_invoice):
    hidden = make_invoice(name="Retired", closing_day=5, is_active=False)
    result = InvoiceSchedulerService(db_session).process_invoices(today=date(2025, 3, 5))
    db_session.refresh(hidden)
    assert (result.closed, result.created) == (0, 0)
    assert hidden.status == models.InvoiceStatus.OPEN


def test_failure_on_one_invoice_does_not_stop_the_run(db_session, make_invoice, monkeypatch):
    broken = make_invoice(name="Broken", closing_day=5)
    healthy = make_invoice(name="Healthy", closing_day=5)

    original_close = InvoiceSchedulerService._close

    def flaky_close(self, invoice, today):
        if invoice.id == broken.id:
            raise RuntimeError("boom")
        return original_close(self, invoice, today)

    monkeypatch.setattr(InvoiceSchedulerService, "_close", flaky_close)

    result = InvoiceSchedulerService(db_session).process_invoices(today=date(2025, 3, 5))

    db_session.refresh(broken)
    db_session.refresh(healthy)
    assert result.closed == 1
    assert healthy.status == models.InvoiceStatus.CLOSED
    assert broken.status == models.InvoiceStatus.OPEN
    assert len(result.failures) == 1
    failure = result.failures[0]
    assert (failure.invoice_id, failure.phase, failure.error) == (broken.id, "close", "boom")
    # later phases still ran for both invoices
    assert result.created == 2
