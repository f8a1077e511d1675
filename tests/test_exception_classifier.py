"""
Unit tests for the exception classifier

Covers amount classification, finance-facing descriptions and advisory
duplicate payment detection.
"""

from datetime import date, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from exception_classifier import (
    AmountDelta,
    classify_amount,
    duplicate_reference,
    find_possible_duplicate_payments,
    orphan_payment,
    overpayment,
    underpayment,
    unmatched_invoice,
)
from models import DuplicateReferenceException, ExceptionType, Invoice, Payment

RECEIVED = datetime(2026, 9, 3, 9, 0, tzinfo=timezone.utc)


def _payment(payment_id="P1", amount=5000, customer_id="C1", reference=None, received=RECEIVED):
    return Payment(
        id=payment_id,
        tenant_id="T1",
        amount=amount,
        currency="KES",
        reference=reference,
        customer_id=customer_id,
        received_at=received,
    )


def _invoice(invoice_id="INV-1", amount=4500, due=date(2026, 9, 1)):
    return Invoice(id=invoice_id, tenant_id="T1", customer_id="C1", amount=amount, due_date=due)


class TestClassifyAmount:

    @pytest.mark.parametrize(
        "payment,invoice,tolerance,expected",
        [
            (5000, 4500, 0, (4500, AmountDelta.OVER, 500)),
            (4000, 4500, 0, (4000, AmountDelta.UNDER, 500)),
            (4500, 4500, 0, (4500, AmountDelta.EXACT, 0)),
            (4550, 4500, 100, (4500, AmountDelta.EXACT, 50)),
            (4450, 4500, 50, (4450, AmountDelta.EXACT, 50)),
            (0, 4500, 0, (0, AmountDelta.UNDER, 4500)),
        ],
    )
    def test_classification(self, payment, invoice, tolerance, expected):
        assert classify_amount(payment, invoice, tolerance) == expected


class TestDescriptions:
    """Every description names the entities and the delta."""

    def test_overpayment_description(self):
        exc = overpayment(_payment(), _invoice(), 500)
        assert exc.type == ExceptionType.OVERPAYMENT
        assert "P1" in exc.description and "INV-1" in exc.description
        assert "KES 5.00" in exc.description
        assert "500 minor units" in exc.description

    def test_underpayment_description(self):
        exc = underpayment(_payment(amount=4000), _invoice(), 500)
        assert exc.type == ExceptionType.UNDERPAYMENT
        assert "short" in exc.description
        assert "KES 40.00" in exc.description and "KES 45.00" in exc.description

    def test_orphan_description_without_customer(self):
        exc = orphan_payment(_payment(customer_id=None, reference="QX7"))
        assert exc.amount == 5000
        assert "no customer id" in exc.description
        assert "'QX7'" in exc.description
        assert "KES 50.00" in exc.description

    def test_orphan_description_with_customer_and_notes(self):
        exc = orphan_payment(_payment(), ["reference X belongs to invoice INV-9 of customer C2"])
        assert "customer C1" in exc.description
        assert "INV-9" in exc.description

    def test_duplicate_reference_names_all_candidates(self):
        exc = duplicate_reference(
            _payment(), "ABC123", [_invoice("INV-1"), _invoice("INV-2")]
        )
        assert exc.invoice_ids == ["INV-1", "INV-2"]
        assert exc.reference == "ABC123"
        assert "INV-1, INV-2" in exc.description

    def test_duplicate_reference_requires_two_candidates(self):
        with pytest.raises(ValidationError):
            DuplicateReferenceException(
                payment_id="P1", reference="ABC", invoice_ids=["INV-1"], description="x"
            )

    def test_unmatched_invoice_description(self):
        exc = unmatched_invoice(_invoice(due=date(2026, 9, 28)), date(2026, 10, 1), "KES")
        assert exc.invoice_id == "INV-1"
        assert exc.amount == 4500
        assert "3 days past due" in exc.description
        assert "KES 45.00" in exc.description

    def test_unmatched_invoice_single_day(self):
        exc = unmatched_invoice(_invoice(due=date(2026, 9, 30)), date(2026, 10, 1), "KES")
        assert "1 day past due" in exc.description


class TestPossibleDuplicatePayments:
    """Advisory grouping of same-customer, same-amount payments."""

    def test_groups_payments_within_window(self):
        payments = [
            _payment("P1"),
            _payment("P2", received=RECEIVED + timedelta(hours=1)),
            _payment("P3", received=RECEIVED + timedelta(hours=30)),
        ]
        groups = find_possible_duplicate_payments(payments)
        assert len(groups) == 1
        assert groups[0].payment_ids == ["P1", "P2"]
        assert groups[0].customer_id == "C1"
        assert groups[0].amount == 5000

    def test_different_amounts_or_customers_not_grouped(self):
        payments = [
            _payment("P1"),
            _payment("P2", amount=5001),
            _payment("P3", customer_id="C2"),
        ]
        assert find_possible_duplicate_payments(payments) == []

    def test_unknown_customers_ignored(self):
        payments = [_payment("P1", customer_id=None), _payment("P2", customer_id=None)]
        assert find_possible_duplicate_payments(payments) == []

    def test_groups_ordered_by_first_payment(self):
        payments = [
            _payment("P1", customer_id="C2", amount=100),
            _payment("P2", customer_id="C1", amount=200),
            _payment("P3", customer_id="C1", amount=200),
            _payment("P4", customer_id="C2", amount=100),
        ]
        groups = find_possible_duplicate_payments(payments)
        assert [g.payment_ids for g in groups] == [["P1", "P4"], ["P2", "P3"]]

    def test_custom_window(self):
        payments = [_payment("P1"), _payment("P2", received=RECEIVED + timedelta(hours=30))]
        assert find_possible_duplicate_payments(payments, window=timedelta(hours=48))
