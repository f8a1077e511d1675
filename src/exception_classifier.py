"""
Exception taxonomy and description rules.

Finance staff read exception descriptions directly, so every description
names the entities involved and, where there is one, the delta both as
money and as raw minor units.
"""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from models import (
    DuplicatePaymentGroup,
    DuplicateReferenceException,
    Invoice,
    OrphanPaymentException,
    OverpaymentException,
    Payment,
    UnderpaymentException,
    UnmatchedInvoiceException,
)
from normalizer import format_minor_units


class AmountDelta(str, Enum):
    EXACT = "exact"
    OVER = "over"
    UNDER = "under"


def _money(amount: int, currency: Optional[str]) -> str:
    return format_minor_units(amount, currency)


def _delta(amount: int, currency: Optional[str]) -> str:
    return f"{_money(amount, currency)} ({amount:,} minor units)"


def classify_amount(
    payment_amount: int, invoice_amount: int, tolerance: int = 0
) -> Tuple[int, AmountDelta, int]:
    """
    Compare a payment against an invoice's outstanding balance.

    Returns ``(applied, kind, delta)``. ``applied`` never exceeds either
    amount. Deltas at or below ``tolerance`` are reported as EXACT.
    """
    applied = min(payment_amount, invoice_amount)
    delta = abs(payment_amount - invoice_amount)
    if delta == 0 or delta <= tolerance:
        return applied, AmountDelta.EXACT, delta
    if payment_amount > invoice_amount:
        return applied, AmountDelta.OVER, delta
    return applied, AmountDelta.UNDER, delta


def overpayment(payment: Payment, invoice: Invoice, delta: int) -> OverpaymentException:
    currency = payment.currency
    return OverpaymentException(
        payment_id=payment.id,
        invoice_id=invoice.id,
        amount=delta,
        description=(
            f"Payment {payment.id} ({_money(payment.amount, currency)}) exceeds invoice "
            f"{invoice.id} outstanding ({_money(invoice.amount, currency)}) by "
            f"{_delta(delta, currency)}"
        ),
    )


def absorbed_delta(payment: Payment, invoice: Invoice, delta: int) -> str:
    """Match note for a delta accepted within tolerance instead of flagged."""
    currency = payment.currency
    relation = "over" if payment.amount > invoice.amount else "under"
    return (
        f"Payment {payment.id} ({_money(payment.amount, currency)}) is {relation} invoice "
        f"{invoice.id} outstanding ({_money(invoice.amount, currency)}) by "
        f"{_delta(delta, currency)}, within tolerance"
    )


def underpayment(payment: Payment, invoice: Invoice, delta: int) -> UnderpaymentException:
    currency = payment.currency
    return UnderpaymentException(
        payment_id=payment.id,
        invoice_id=invoice.id,
        amount=delta,
        description=(
            f"Payment {payment.id} ({_money(payment.amount, currency)}) is short of invoice "
            f"{invoice.id} outstanding ({_money(invoice.amount, currency)}) by "
            f"{_delta(delta, currency)}; invoice remains open for the shortfall"
        ),
    )


def orphan_payment(payment: Payment, notes: Sequence[str] = ()) -> OrphanPaymentException:
    amount = _money(payment.amount, payment.currency)
    if payment.customer_id is None:
        text = f"Payment {payment.id} ({amount}) has no customer id"
        if payment.reference:
            text = f"{text} and reference {payment.reference!r} matched no open invoice"
        else:
            text = f"{text} and no reference"
    else:
        text = (
            f"Payment {payment.id} ({amount}) from customer {payment.customer_id} "
            f"matched no open invoice"
        )
        if payment.reference:
            text = f"{text} (reference {payment.reference!r})"
    if notes:
        text = f"{text}; " + "; ".join(notes)
    return OrphanPaymentException(
        payment_id=payment.id,
        amount=payment.amount,
        description=f"{text}. Unapplied amount {_delta(payment.amount, payment.currency)}",
    )


def duplicate_reference(
    payment: Payment, reference: str, candidates: Sequence[Invoice]
) -> DuplicateReferenceException:
    invoice_ids = [inv.id for inv in candidates]
    return DuplicateReferenceException(
        payment_id=payment.id,
        reference=reference,
        invoice_ids=invoice_ids,
        description=(
            f"Payment {payment.id} reference {reference} is shared by "
            f"{len(invoice_ids)} open invoices ({', '.join(invoice_ids)}); "
            f"not matched by reference"
        ),
    )


def unmatched_invoice(invoice: Invoice, as_of, currency: Optional[str]) -> UnmatchedInvoiceException:
    currency = invoice.currency or currency
    days = (as_of - invoice.due_date).days
    return UnmatchedInvoiceException(
        invoice_id=invoice.id,
        amount=invoice.amount,
        description=(
            f"Invoice {invoice.id} for customer {invoice.customer_id} is "
            f"{days} day{'s' if days != 1 else ''} past due "
            f"(due {invoice.due_date.isoformat()}) with no matching payment; "
            f"outstanding {_delta(invoice.amount, currency)}"
        ),
    )


def find_possible_duplicate_payments(
    payments: Sequence[Payment], window: timedelta = timedelta(hours=24)
) -> List[DuplicatePaymentGroup]:
    """
    Group payments with the same customer and amount received close together.

    Each group is anchored on its earliest payment in input order; a payment
    joins at most one group. Payments without a customer id are ignored.
    """
    buckets: Dict[Tuple[str, int], List[Payment]] = {}
    for payment in payments:
        if payment.customer_id is None:
            continue
        buckets.setdefault((payment.customer_id, payment.amount), []).append(payment)

    groups: List[Tuple[int, DuplicatePaymentGroup]] = []
    positions = {p.id: i for i, p in enumerate(payments)}
    for (customer_id, amount), bucket in buckets.items():
        grouped = set()
        for i, anchor in enumerate(bucket):
            if anchor.id in grouped:
                continue
            members = [anchor]
            for other in bucket[i + 1:]:
                if other.id in grouped:
                    continue
                if abs(other.received_at - anchor.received_at) < window:
                    members.append(other)
            if len(members) > 1:
                grouped.update(p.id for p in members)
                groups.append(
                    (
                        positions[anchor.id],
                        DuplicatePaymentGroup(
                            customer_id=customer_id,
                            amount=amount,
                            payment_ids=[p.id for p in members],
                        ),
                    )
                )

    return [group for _, group in sorted(groups, key=lambda g: g[0])]
