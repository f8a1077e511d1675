"""
Candidate index over one batch of invoices.

Groups invoices by customer and by normalized reference so a payment batch
can be matched without scanning every invoice for every payment. The index
is built fresh for each run and tracks which invoices have been consumed.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Set, Tuple

from models import Invoice
from normalizer import DEFAULT_STRIP_PREFIXES, normalize_reference

logger = logging.getLogger(__name__)

CustomerKey = Tuple[str, str]


class CandidateIndex:
    """Lookup structure for unconsumed invoices."""

    def __init__(self, strip_prefixes: Iterable[str] = DEFAULT_STRIP_PREFIXES) -> None:
        self.strip_prefixes = tuple(strip_prefixes)
        self._invoices: Dict[str, Invoice] = {}
        self._order: Dict[str, int] = {}
        self._by_customer: Dict[CustomerKey, List[Invoice]] = defaultdict(list)
        self._by_reference: Dict[str, List[Invoice]] = defaultdict(list)
        self._consumed: Set[str] = set()

    @classmethod
    def build(
        cls,
        invoices: List[Invoice],
        strip_prefixes: Iterable[str] = DEFAULT_STRIP_PREFIXES,
    ) -> "CandidateIndex":
        """Index invoices by (tenant, customer) and by normalized reference."""
        index = cls(strip_prefixes)
        for position, invoice in enumerate(invoices):
            if invoice.id in index._invoices:
                raise ValueError(f"Invoice {invoice.id} indexed twice")
            index._invoices[invoice.id] = invoice
            index._order[invoice.id] = position
            index._by_customer[(invoice.tenant_id, invoice.customer_id)].append(invoice)

            ref = normalize_reference(invoice.reference, index.strip_prefixes)
            if ref:
                index._by_reference[ref].append(invoice)

        # Oldest obligation first; sort is stable so input order breaks ties.
        for bucket in index._by_customer.values():
            bucket.sort(key=lambda inv: inv.due_date)

        logger.debug(
            "Built candidate index: %d invoices, %d customers, %d references",
            len(index._invoices),
            len(index._by_customer),
            len(index._by_reference),
        )
        return index

    def __len__(self) -> int:
        return len(self._invoices)

    def __contains__(self, invoice_id: str) -> bool:
        return invoice_id in self._invoices

    def normalize(self, raw_reference) -> str:
        return normalize_reference(raw_reference, self.strip_prefixes)

    def find_by_reference(self, reference: str) -> List[Invoice]:
        """
        Unconsumed invoices carrying ``reference``, in input order.

        More than one result is the duplicate-reference condition; the caller
        decides how to flag it.
        """
        ref = self.normalize(reference)
        if not ref:
            return []
        return [inv for inv in self._by_reference.get(ref, []) if inv.id not in self._consumed]

    def find_by_customer_and_amount(
        self, tenant_id: str, customer_id: str, amount: int
    ) -> List[Invoice]:
        """Unconsumed invoices of a customer with exactly ``amount`` outstanding, oldest first."""
        return [
            inv
            for inv in self.find_by_customer(tenant_id, customer_id)
            if inv.amount == amount
        ]

    def find_by_customer(self, tenant_id: str, customer_id: str) -> List[Invoice]:
        bucket = self._by_customer.get((tenant_id, customer_id), [])
        return [inv for inv in bucket if inv.id not in self._consumed]

    def consume(self, invoice_id: str) -> None:
        """Remove an invoice from candidacy. Repeated or unknown ids are a no-op."""
        if invoice_id not in self._invoices or invoice_id in self._consumed:
            return
        self._consumed.add(invoice_id)
        logger.debug("Consumed invoice %s", invoice_id)

    def is_consumed(self, invoice_id: str) -> bool:
        return invoice_id in self._consumed

    def position(self, invoice_id: str) -> int:
        return self._order[invoice_id]

    def unconsumed(self) -> List[Invoice]:
        """Invoices never consumed, in input order."""
        return [inv for inv in self._invoices.values() if inv.id not in self._consumed]
