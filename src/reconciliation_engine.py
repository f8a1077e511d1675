"""
Core reconciliation logic for matching payments against open invoices.

Validates both batches up front (all-or-nothing), indexes the open invoices,
runs the tiered matcher over payments in input order and accounts for every
payment and invoice in exactly one output bucket.
"""

from __future__ import annotations

import time
from datetime import timedelta
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Type, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from candidate_index import CandidateIndex
from exception_classifier import find_possible_duplicate_payments, unmatched_invoice
from matcher import PaymentMatcher
from metrics import MetricsCollector, metrics
from models import Invoice, MatcherConfig, Payment, ReconciliationResult

# Structured logger for audit trail and operational monitoring
logger = structlog.get_logger()

ModelT = TypeVar("ModelT", bound=BaseModel)


class ReconciliationInputError(ValueError):
    """Input batches cannot be reconciled. Raised before any matching happens."""

    def __init__(self, message: str, problems: Optional[Iterable[str]] = None) -> None:
        self.problems = list(problems or [])
        if self.problems:
            message = f"{message}:\n  " + "\n  ".join(self.problems)
        super().__init__(message)


class BatchValidationError(ReconciliationInputError):
    """One or more payment/invoice records are malformed or duplicated."""


class TenantMismatchError(ReconciliationInputError):
    """Payments and invoices in one run belong to more than one tenant."""


class CurrencyMismatchError(ReconciliationInputError):
    """Payments and invoices in one run are in more than one currency."""


class ReconciliationEngine:
    """Reconciles one tenant's payment batch against its invoice batch."""

    def __init__(
        self,
        config: Optional[MatcherConfig] = None,
        metrics_collector: Optional[MetricsCollector] = None,
    ) -> None:
        self.config = config or MatcherConfig()
        self.metrics = metrics_collector or metrics

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    @staticmethod
    def _coerce(
        records: Sequence[Any], model: Type[ModelT], label: str, problems: List[str]
    ) -> List[ModelT]:
        """Validate records (models or mappings) into ``model`` instances, collecting errors."""
        validated: List[ModelT] = []
        for position, record in enumerate(records):
            data = record.model_dump() if isinstance(record, BaseModel) else record
            try:
                validated.append(model.model_validate(data))
            except ValidationError as e:
                record_id = data.get("id") if isinstance(data, dict) else None
                for err in e.errors():
                    location = ".".join(str(part) for part in err["loc"]) or "record"
                    problems.append(f"{label}[{position}] id={record_id!r} {location}: {err['msg']}")
        return validated

    @staticmethod
    def _find_duplicate_ids(records: Sequence[BaseModel], label: str) -> List[str]:
        seen = set()
        problems = []
        for record in records:
            if record.id in seen:
                problems.append(f"{label} id {record.id!r} appears more than once")
            seen.add(record.id)
        return problems

    def validate(
        self, payments: Sequence[Any], invoices: Sequence[Any]
    ) -> Tuple[List[Payment], List[Invoice]]:
        """
        Validate both batches as a whole.

        Raises:
            BatchValidationError: malformed or duplicated records
            TenantMismatchError: more than one tenant across the batches
            CurrencyMismatchError: more than one currency across the batches
        """
        problems: List[str] = []
        valid_payments = self._coerce(payments, Payment, "payments", problems)
        valid_invoices = self._coerce(invoices, Invoice, "invoices", problems)
        if problems:
            raise BatchValidationError("Invalid reconciliation input", problems)

        problems = self._find_duplicate_ids(valid_payments, "payment")
        problems += self._find_duplicate_ids(valid_invoices, "invoice")
        if problems:
            raise BatchValidationError("Duplicate record ids", problems)

        tenants = sorted(
            {p.tenant_id for p in valid_payments} | {i.tenant_id for i in valid_invoices}
        )
        if len(tenants) > 1:
            raise TenantMismatchError(
                "A reconciliation run covers exactly one tenant",
                [f"tenant {t!r}" for t in tenants],
            )

        currencies = sorted(
            {p.currency for p in valid_payments}
            | {i.currency for i in valid_invoices if i.currency}
        )
        if len(currencies) > 1:
            raise CurrencyMismatchError(
                "A reconciliation run covers exactly one currency",
                [f"currency {c!r}" for c in currencies],
            )

        return valid_payments, valid_invoices

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------
    def reconcile(
        self,
        payments: Sequence[Any],
        invoices: Sequence[Any],
        config: Optional[MatcherConfig] = None,
    ) -> ReconciliationResult:
        """
        Execute reconciliation of payments against invoices.

        Args:
            payments: Payments received, as models or mappings, in arrival order
            invoices: Outstanding invoices, as models or mappings
            config: Per-run options; defaults to the engine's configuration

        Returns:
            ReconciliationResult with matches, exceptions and unmatched remainders
        """
        config = config or self.config
        start = time.perf_counter()
        try:
            valid_payments, valid_invoices = self.validate(payments, invoices)
        except ReconciliationInputError as e:
            self.metrics.record_failed_run(time.perf_counter() - start)
            logger.error("Reconciliation input rejected", error=str(e).splitlines()[0], problems=e.problems)
            raise

        run_at = config.clock()
        as_of = run_at.date()
        tenant_id = next(
            (r.tenant_id for r in [*valid_payments, *valid_invoices]), None
        )
        currency = next(
            (c for c in [*(p.currency for p in valid_payments), *(i.currency for i in valid_invoices)] if c),
            None,
        )

        open_invoices = [inv for inv in valid_invoices if inv.is_open]
        closed_invoices = [inv for inv in valid_invoices if not inv.is_open]
        index = CandidateIndex.build(open_invoices, config.reference_strip_prefixes)
        matcher = PaymentMatcher(index, config)

        matches = []
        exceptions = []
        unmatched_payments = []
        for outcome in matcher.match_all(valid_payments):
            if outcome.matched:
                matches.append(outcome.match)
            else:
                unmatched_payments.append(outcome.payment)
            exceptions.extend(outcome.exceptions)

        unmatched_invoices = index.unconsumed()
        for invoice in unmatched_invoices:
            # Not yet due is expected to be open; only past-due balances are flagged.
            if invoice.due_date < as_of:
                exceptions.append(unmatched_invoice(invoice, as_of, currency))

        duplicates = find_possible_duplicate_payments(
            valid_payments, timedelta(hours=config.duplicate_payment_window_hours)
        )

        result = ReconciliationResult(
            tenant_id=tenant_id,
            currency=currency,
            run_at=run_at,
            matches=matches,
            exceptions=exceptions,
            unmatched_payments=unmatched_payments,
            unmatched_invoices=unmatched_invoices,
            closed_invoices=closed_invoices,
            possible_duplicate_payments=duplicates,
            total_amount_received=sum(p.amount for p in valid_payments),
        )

        duration = time.perf_counter() - start
        self.metrics.record_run(result, len(valid_payments), duration)
        logger.info(
            "Reconciliation complete",
            tenant_id=tenant_id,
            payments=len(valid_payments),
            invoices=len(valid_invoices),
            matches=len(matches),
            exceptions=len(exceptions),
            unmatched_payments=len(unmatched_payments),
            unmatched_invoices=len(unmatched_invoices),
            closed_invoices=len(closed_invoices),
            duration_ms=round(duration * 1000, 2),
        )
        return result


def reconcile(
    payments: Sequence[Any],
    invoices: Sequence[Any],
    options: Optional[MatcherConfig] = None,
) -> ReconciliationResult:
    """Reconcile one tenant's payments against its invoices with a fresh engine."""
    return ReconciliationEngine(options).reconcile(payments, invoices)
