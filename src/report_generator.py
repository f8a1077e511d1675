"""
Reconciliation report builder.

Aggregates a ReconciliationResult into summary totals and republishes matches
and exceptions in a stable external shape for the PDF/Excel/CSV renderers
and notifiers. Pure: no I/O, no clock.
"""

from __future__ import annotations

from collections import Counter
from typing import Dict

import structlog

from models import (
    ExceptionType,
    MatchType,
    ReconciliationReport,
    ReconciliationResult,
    ReportException,
    ReportSummary,
)

logger = structlog.get_logger()


class ReportGenerator:
    """Builds the structured reconciliation report from a run's result."""

    def generate(self, result: ReconciliationResult) -> ReconciliationReport:
        summary = self._build_summary(result)
        report = ReconciliationReport(
            tenant_id=result.tenant_id,
            currency=result.currency,
            run_at=result.run_at,
            summary=summary,
            matches=list(result.matches),
            exceptions=[self._flatten_exception(e) for e in result.exceptions],
            unmatched_payment_ids=[p.id for p in result.unmatched_payments],
            unmatched_invoice_ids=[i.id for i in result.unmatched_invoices],
            possible_duplicate_payments=list(result.possible_duplicate_payments),
        )
        logger.info(
            "Built reconciliation report",
            tenant_id=result.tenant_id,
            total_matches=summary.total_matches,
            matched_amount=summary.matched_amount,
            total_exceptions=summary.total_exceptions,
            review_status=summary.review_status,
        )
        return report

    def _build_summary(self, result: ReconciliationResult) -> ReportSummary:
        exception_counts: Dict[str, int] = {t.value: 0 for t in ExceptionType}
        exception_counts.update(Counter(e.type for e in result.exceptions))
        match_counts: Dict[str, int] = {t.value: 0 for t in MatchType}
        match_counts.update(Counter(m.match_type.value for m in result.matches))

        total_payments = len(result.matches) + len(result.unmatched_payments)
        # Each matched invoice pairs with one match; closed invoices are never reviewed.
        open_invoices = len(result.matches) + len(result.unmatched_invoices)
        flagged_payments = {e.payment_id for e in result.exceptions if getattr(e, "payment_id", None)}
        flagged_invoices = {
            e.invoice_id for e in result.exceptions_of(ExceptionType.UNMATCHED_INVOICE)
        }
        records = total_payments + open_invoices
        exception_rate = (
            (len(flagged_payments) + len(flagged_invoices)) / records if records > 0 else 0.0
        )

        return ReportSummary(
            total_payments=total_payments,
            total_amount_received=result.total_amount_received,
            total_matches=len(result.matches),
            matched_amount=sum(m.amount for m in result.matches),
            matches_by_type=match_counts,
            total_exceptions=len(result.exceptions),
            exceptions_by_type=exception_counts,
            unmatched_payment_count=len(result.unmatched_payments),
            unmatched_payment_amount=sum(p.amount for p in result.unmatched_payments),
            unmatched_invoice_count=len(result.unmatched_invoices),
            outstanding_amount=sum(i.amount for i in result.unmatched_invoices),
            overpaid_amount=self._sum_exceptions(result, ExceptionType.OVERPAYMENT),
            underpaid_amount=self._sum_exceptions(result, ExceptionType.UNDERPAYMENT),
            absorbed_amount=sum(m.absorbed_amount or 0 for m in result.matches),
            exception_rate=exception_rate,
            review_status="NEEDS_REVIEW" if result.exceptions else "CLEAN",
        )

    @staticmethod
    def _sum_exceptions(result: ReconciliationResult, exception_type: ExceptionType) -> int:
        return sum(e.amount for e in result.exceptions_of(exception_type))

    @staticmethod
    def _flatten_exception(exception) -> ReportException:
        return ReportException(**exception.model_dump())


def generate_reconciliation_report(result: ReconciliationResult) -> ReconciliationReport:
    """Aggregate a reconciliation result into its external report shape."""
    return ReportGenerator().generate(result)
