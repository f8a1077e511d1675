"""
Tiered payment matcher.

Each payment is tried, in order, against:

1. the invoice carrying the same normalized reference (``exact_reference``);
2. the customer's invoices with exactly the same outstanding amount
   (``customer_amount``, oldest due date wins);
3. the customer's invoices due within a window around the receipt date
   (``fuzzy``, closest due date wins).

A payment nothing claims becomes an orphan. Matched invoices are consumed
immediately, so earlier payments in the batch get first claim.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

import structlog

from candidate_index import CandidateIndex
from exception_classifier import (
    AmountDelta,
    absorbed_delta,
    classify_amount,
    duplicate_reference,
    orphan_payment,
    overpayment,
    underpayment,
)
from models import (
    Invoice,
    MatcherConfig,
    MatchResult,
    MatchType,
    Payment,
    ReconciliationException,
)

logger = structlog.get_logger()


@dataclass
class MatchOutcome:
    """What happened to one payment: at most one match plus any exceptions raised on the way."""

    payment: Payment
    match: Optional[MatchResult] = None
    exceptions: List[ReconciliationException] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.match is not None


class PaymentMatcher:
    """Assigns payments to invoices from a CandidateIndex, one payment at a time."""

    def __init__(self, index: CandidateIndex, config: Optional[MatcherConfig] = None) -> None:
        self.index = index
        self.config = config or MatcherConfig()

    def match(self, payment: Payment) -> MatchOutcome:
        outcome = MatchOutcome(payment=payment)
        notes: List[str] = []

        if self._match_by_reference(payment, outcome, notes):
            return outcome

        if payment.customer_id is not None:
            if self._match_by_customer_amount(payment, outcome):
                return outcome
            if self._match_by_due_window(payment, outcome):
                return outcome

        outcome.exceptions.append(orphan_payment(payment, notes))
        logger.info(
            "Payment orphaned",
            payment_id=payment.id,
            customer_id=payment.customer_id,
            amount=payment.amount,
        )
        return outcome

    def match_all(self, payments: List[Payment]) -> List[MatchOutcome]:
        """Match payments in input order; never reorders."""
        return [self.match(payment) for payment in payments]

    # ------------------------------------------------------------------
    # Tiers
    # ------------------------------------------------------------------
    def _match_by_reference(
        self, payment: Payment, outcome: MatchOutcome, notes: List[str]
    ) -> bool:
        reference = self.index.normalize(payment.reference)
        if not reference:
            return False

        candidates = self.index.find_by_reference(reference)
        if not candidates:
            return False

        if len(candidates) > 1:
            outcome.exceptions.append(duplicate_reference(payment, reference, candidates))
            logger.warning(
                "Duplicate invoice reference",
                payment_id=payment.id,
                reference=reference,
                invoice_ids=[inv.id for inv in candidates],
            )
            return False

        invoice = candidates[0]
        if invoice.tenant_id != payment.tenant_id:
            notes.append(f"reference {reference} belongs to invoice {invoice.id} of another tenant")
            return False
        if payment.customer_id is not None and payment.customer_id != invoice.customer_id:
            notes.append(
                f"reference {reference} belongs to invoice {invoice.id} of customer "
                f"{invoice.customer_id}"
            )
            logger.warning(
                "Reference customer mismatch",
                payment_id=payment.id,
                invoice_id=invoice.id,
                payment_customer=payment.customer_id,
                invoice_customer=invoice.customer_id,
            )
            return False

        self._apply(payment, invoice, MatchType.EXACT_REFERENCE, outcome)
        return True

    def _match_by_customer_amount(self, payment: Payment, outcome: MatchOutcome) -> bool:
        candidates = self.index.find_by_customer_and_amount(
            payment.tenant_id, payment.customer_id, payment.amount
        )
        if not candidates:
            return False

        invoice = candidates[0]
        description = None
        if len(candidates) > 1:
            description = (
                f"Chose invoice {invoice.id} (oldest, due {invoice.due_date.isoformat()}) "
                f"among {len(candidates)} invoices with the same customer and amount: "
                f"{', '.join(inv.id for inv in candidates)}"
            )
            logger.info(
                "Ambiguous customer/amount match resolved by due date",
                payment_id=payment.id,
                invoice_ids=[inv.id for inv in candidates],
                chosen=invoice.id,
            )

        self._apply(payment, invoice, MatchType.CUSTOMER_AMOUNT, outcome, description)
        return True

    def _match_by_due_window(self, payment: Payment, outcome: MatchOutcome) -> bool:
        window = self.config.fuzzy_window_days
        if window is None or payment.amount == 0:
            return False

        received = payment.received_at.date()
        candidates = [
            inv
            for inv in self.index.find_by_customer(payment.tenant_id, payment.customer_id)
            if abs((inv.due_date - received).days) <= window
        ]
        if not candidates:
            return False

        invoice = min(
            candidates,
            key=lambda inv: (
                abs((inv.due_date - received).days),
                inv.due_date,
                self.index.position(inv.id),
            ),
        )
        distance = abs((invoice.due_date - received).days)
        description = (
            f"Invoice {invoice.id} due {invoice.due_date.isoformat()} is {distance} "
            f"day{'s' if distance != 1 else ''} from receipt on {received.isoformat()} "
            f"(window {window} days)"
        )
        if len(candidates) > 1:
            description += f"; other candidates: {', '.join(inv.id for inv in candidates if inv.id != invoice.id)}"

        self._apply(payment, invoice, MatchType.FUZZY, outcome, description)
        return True

    # ------------------------------------------------------------------
    def _apply(
        self,
        payment: Payment,
        invoice: Invoice,
        match_type: MatchType,
        outcome: MatchOutcome,
        description: Optional[str] = None,
    ) -> None:
        applied, kind, delta = classify_amount(
            payment.amount, invoice.amount, self.config.tolerance_minor_units
        )
        absorbed = None
        if kind is AmountDelta.EXACT and delta > 0:
            absorbed = delta
            note = absorbed_delta(payment, invoice, delta)
            description = f"{description}; {note}" if description else note

        self.index.consume(invoice.id)
        outcome.match = MatchResult(
            payment_id=payment.id,
            invoice_id=invoice.id,
            amount=applied,
            match_type=match_type,
            description=description,
            absorbed_amount=absorbed,
        )
        if kind is AmountDelta.OVER:
            outcome.exceptions.append(overpayment(payment, invoice, delta))
        elif kind is AmountDelta.UNDER:
            outcome.exceptions.append(underpayment(payment, invoice, delta))

        logger.info(
            "Payment matched",
            payment_id=payment.id,
            invoice_id=invoice.id,
            match_type=match_type.value,
            applied=applied,
            amount_delta=kind.value,
            delta=delta,
        )
