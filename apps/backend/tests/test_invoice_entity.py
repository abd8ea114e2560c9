from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from cardbill import models
from cardbill.core.exceptions import InsufficientLimitError, InvalidOperationError


def _invoice(**kw) -> models.Invoice:
    data = {
        "name": "Card",
        "closing_day": 5,
        "due_day": 10,
        "status": models.InvoiceStatus.OPEN,
        "credit_limit": Decimal("1000"),
        "used_limit": Decimal("0"),
    }
    data.update(kw)
    return models.Invoice(**data)


def test_use_limit_reduces_available_and_rejects_overdraw():
    inv = _invoice()
    inv.use_limit(400)
    assert inv.used_limit == Decimal("400")
    assert inv.available_limit == Decimal("600")

    with pytest.raises(InsufficientLimitError) as exc:
        inv.use_limit(700)
    assert "Available: 600.00" in exc.value.message
    assert "requested: 700.00" in exc.value.message
    assert inv.used_limit == Decimal("400")


def test_use_limit_without_credit_limit_is_invalid():
    inv = _invoice(credit_limit=None)
    assert inv.available_limit == Decimal("0")
    with pytest.raises(InvalidOperationError):
        inv.use_limit(1)


def test_zero_credit_limit_counts_as_not_configured():
    inv = _invoice(credit_limit=Decimal("0"))
    assert not inv.has_credit_limit
    assert inv.available_limit == Decimal("0")
    with pytest.raises(InvalidOperationError):
        inv.use_limit(1)


def test_use_limit_accepts_exact_remaining_amount():
    inv = _invoice(credit_limit=Decimal("100"), used_limit=Decimal("40"))
    inv.use_limit(Decimal("60"))
    assert inv.available_limit == Decimal("0")
    assert not inv.has_available_limit(Decimal("0.01"))


def test_release_limit_clamps_at_zero():
    inv = _invoice(used_limit=Decimal("50"))
    inv.release_limit(80)
    assert inv.used_limit == Decimal("0")


def test_use_then_release_restores_used_limit():
    inv = _invoice(used_limit=Decimal("123.45"))
    inv.use_limit(Decimal("76.55"))
    inv.release_limit(Decimal("76.55"))
    assert inv.used_limit == Decimal("123.45")


def test_update_credit_limit_rules():
    inv = _invoice(credit_limit=Decimal("500"), used_limit=Decimal("500"))
    with pytest.raises(InvalidOperationError):
        inv.update_credit_limit(400)
    inv.update_credit_limit(600)
    assert inv.available_limit == Decimal("100")

    empty = _invoice(used_limit=Decimal("0"))
    with pytest.raises(InvalidOperationError):
        empty.update_credit_limit(0)


def test_limit_info_and_usage_percentage():
    inv = _invoice(credit_limit=Decimal("200"), used_limit=Decimal("150"))
    info = inv.limit_info()
    assert info["available"] == Decimal("50")
    assert info["used"] == Decimal("150")
    assert info["total"] == Decimal("200")
    assert info["usage_percentage"] == pytest.approx(75.0)
    assert _invoice(credit_limit=None).limit_usage_percentage() == 0.0


def test_status_transitions():
    inv = _invoice()
    assert inv.is_open() and not inv.can_pay()
    assert not inv.can_close()

    inv.close(date(2025, 3, 5), date(2025, 4, 10), Decimal("250"))
    assert inv.is_closed()
    assert inv.total_amount == Decimal("250")
    assert inv.status_description.startswith("Closed")

    with pytest.raises(InvalidOperationError):
        inv.close(date(2025, 3, 5), date(2025, 4, 10), Decimal("0"))

    inv.mark_overdue()
    assert inv.is_overdue() and inv.can_pay()

    inv.mark_paid(date(2025, 4, 12))
    assert inv.is_paid()
    assert inv.payment_date == date(2025, 4, 12)
    with pytest.raises(InvalidOperationError):
        inv.mark_paid(date(2025, 4, 13))
    with pytest.raises(InvalidOperationError):
        inv.mark_overdue()


def test_credit_card_helpers_only_count_active_credit_cards():
    inv = _invoice()
    inv.payment_methods = [
        models.PaymentMethod(id=1, name="Gold", type=models.PaymentMethodType.CREDIT_CARD, is_active=True, last_four_digits="4321"),
        models.PaymentMethod(id=2, name="Old", type=models.PaymentMethodType.CREDIT_CARD, is_active=False),
    ]
    cards = inv.credit_cards()
    assert [c.id for c in cards] == [1]
    assert inv.has_credit_cards()
    assert inv.payment_method_ids == [1]
    assert cards[0].display_name == "Gold (**** 4321)"


def test_transaction_holds_reservation_only_for_live_invoice_expenses():
    tx = models.Transaction(
        type=models.TxnType.EXPENSE,
        status=models.TransactionStatus.PENDING,
        invoice_id=1,
        is_active=True,
    )
    assert tx.holds_reservation
    tx.status = models.TransactionStatus.CANCELED
    assert not tx.holds_reservation
    tx.status = models.TransactionStatus.COMPLETED
    tx.is_active = False
    assert not tx.holds_reservation
    income = models.Transaction(type=models.TxnType.INCOME, status=models.TransactionStatus.COMPLETED, is_active=True)
    assert not income.holds_reservation
