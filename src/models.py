"""
models.py

Defines all core data models for the Payment Reconciliation Core.
Models are built using Pydantic for robust validation, type safety, and serialization.
Inputs and outputs are frozen value objects: a reconciliation run reads them and
emits new ones, it never mutates what the caller handed in.
"""

from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Annotated, Callable, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from normalizer import (
    DEFAULT_STRIP_PREFIXES,
    normalize_amount,
    normalize_currency,
)


def utc_now() -> datetime:
    """Default reconciliation clock."""
    return datetime.now(timezone.utc)


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _enum_token(value):
    # Upstream feeds spell multi-word values with hyphens ("partially-paid").
    if isinstance(value, str):
        return value.strip().lower().replace("-", "_")
    return value


# -----------------------------------------------------------------------------
# 1. System Configuration Model
# -----------------------------------------------------------------------------
class Settings(BaseSettings):
    """
    Application configuration loaded from environment variables or .env files.

    Centralizes matcher defaults, reporting output and observability settings.
    """

    # Matching Configuration
    REFERENCE_STRIP_PREFIXES: List[str] = Field(
        default_factory=lambda: list(DEFAULT_STRIP_PREFIXES),
        description="Provider prefixes removed from references (JSON list)",
    )
    TOLERANCE_MINOR_UNITS: int = Field(
        default=0, ge=0, description="Amount delta at or below which over/underpayment is not flagged"
    )
    FUZZY_WINDOW_DAYS: Optional[int] = Field(
        default=7, ge=0, description="Due-date window for fuzzy matching (null disables)"
    )
    DUPLICATE_PAYMENT_WINDOW_HOURS: int = Field(
        default=24, ge=0, description="Window for flagging possible duplicate payments"
    )

    # Application Configuration
    REPORT_OUTPUT_DIR: Path = Field(
        default=Path("local_reports"), description="Directory for report outputs"
    )
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    # Metrics Configuration
    METRICS_ENABLED: bool = Field(default=False, description="Expose Prometheus metrics")
    METRICS_PORT: int = Field(default=8000, description="Prometheus exporter port")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class MatcherConfig(BaseModel):
    """
    Options recognized by a single reconciliation run.

    ``clock`` is injectable so the past-due rule for unmatched invoices can be
    tested deterministically.
    """

    model_config = ConfigDict(frozen=True)

    reference_strip_prefixes: Tuple[str, ...] = Field(
        default=DEFAULT_STRIP_PREFIXES,
        description="Provider prefixes removed during reference normalization",
    )
    tolerance_minor_units: int = Field(
        default=0, ge=0, description="Amount delta at or below which over/underpayment is not flagged"
    )
    clock: Callable[[], datetime] = Field(
        default=utc_now, description="Reference clock for the past-due rule"
    )
    fuzzy_window_days: Optional[int] = Field(
        default=7, ge=0, description="Due-date window for the fuzzy tier; None disables it"
    )
    duplicate_payment_window_hours: int = Field(
        default=24, ge=0, description="Window for advisory duplicate payment groups"
    )

    @field_validator("reference_strip_prefixes", mode="before")
    @classmethod
    def _clean_prefixes(cls, value):
        if isinstance(value, str):
            value = [value]
        return tuple(p.strip().upper() for p in value if p and p.strip())

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "MatcherConfig":
        """Build a run configuration from application settings."""
        values = {
            "reference_strip_prefixes": settings.REFERENCE_STRIP_PREFIXES,
            "tolerance_minor_units": settings.TOLERANCE_MINOR_UNITS,
            "fuzzy_window_days": settings.FUZZY_WINDOW_DAYS,
            "duplicate_payment_window_hours": settings.DUPLICATE_PAYMENT_WINDOW_HOURS,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


# -----------------------------------------------------------------------------
# 2. Input Records
# -----------------------------------------------------------------------------
class PaymentChannel(str, Enum):
    MOBILE_MONEY = "mobile_money"
    BANK = "bank"
    CARD = "card"
    CASH = "cash"


class InvoiceStatus(str, Enum):
    OPEN = "open"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    VOID = "void"


class Payment(BaseModel):
    """
    Immutable record of money received.

    Created by upstream ingestion (callback handlers, bank feeds). Amounts are
    integer minor units; anything else is rejected rather than coerced.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Unique payment identifier")
    tenant_id: str = Field(..., min_length=1, description="Owning tenant")
    amount: int = Field(..., description="Amount received in minor units")
    currency: str = Field(..., description="ISO currency code (e.g., KES)")
    reference: Optional[str] = Field(None, description="Provider transaction code")
    customer_id: Optional[str] = Field(None, description="Paying customer, if known")
    received_at: datetime = Field(..., description="Timestamp the money was received")
    channel: PaymentChannel = Field(
        default=PaymentChannel.MOBILE_MONEY, description="Channel the payment came through"
    )

    @field_validator("id", "tenant_id", mode="before")
    @classmethod
    def _strip_ids(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("customer_id", mode="before")
    @classmethod
    def _optional_customer(cls, value):
        return _blank_to_none(value)

    @field_validator("amount", mode="before")
    @classmethod
    def _check_amount(cls, value):
        return normalize_amount(value)

    @field_validator("currency", mode="before")
    @classmethod
    def _check_currency(cls, value):
        return normalize_currency(value)

    @field_validator("channel", mode="before")
    @classmethod
    def _check_channel(cls, value):
        return _enum_token(value)

    @field_validator("received_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # Naive timestamps from feeds are UTC; keeps batch arithmetic comparable.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Invoice(BaseModel):
    """
    Obligation owed by a customer (charge or installment).

    ``amount`` is the outstanding balance at the time the batch was read.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Unique invoice identifier")
    tenant_id: str = Field(..., min_length=1, description="Owning tenant")
    customer_id: str = Field(..., min_length=1, description="Customer that owes the invoice")
    lease_id: Optional[str] = Field(None, description="Lease the charge belongs to")
    amount: int = Field(..., description="Outstanding balance in minor units")
    due_date: date = Field(..., description="Date the balance is due")
    reference: Optional[str] = Field(None, description="Expected payment reference")
    status: InvoiceStatus = Field(default=InvoiceStatus.OPEN, description="Invoice status")
    currency: Optional[str] = Field(None, description="ISO currency code, if recorded")

    @field_validator("id", "tenant_id", "customer_id", mode="before")
    @classmethod
    def _strip_ids(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("lease_id", mode="before")
    @classmethod
    def _optional_lease(cls, value):
        return _blank_to_none(value)

    @field_validator("amount", mode="before")
    @classmethod
    def _check_amount(cls, value):
        return normalize_amount(value)

    @field_validator("currency", mode="before")
    @classmethod
    def _check_currency(cls, value):
        if _blank_to_none(value) is None:
            return None
        return normalize_currency(value)

    @field_validator("status", mode="before")
    @classmethod
    def _check_status(cls, value):
        return _enum_token(value)

    @property
    def is_open(self) -> bool:
        """Whether the invoice can still take a payment in this run."""
        return (
            self.status in (InvoiceStatus.OPEN, InvoiceStatus.PARTIALLY_PAID)
            and self.amount > 0
        )


# -----------------------------------------------------------------------------
# 3. Reconciliation Output
# -----------------------------------------------------------------------------
class MatchType(str, Enum):
    EXACT_REFERENCE = "exact_reference"
    CUSTOMER_AMOUNT = "customer_amount"
    FUZZY = "fuzzy"


class ExceptionType(str, Enum):
    OVERPAYMENT = "overpayment"
    UNDERPAYMENT = "underpayment"
    ORPHAN_PAYMENT = "orphan_payment"
    DUPLICATE_REFERENCE = "duplicate_reference"
    UNMATCHED_INVOICE = "unmatched_invoice"


class MatchResult(BaseModel):
    """One payment applied to one invoice."""

    model_config = ConfigDict(frozen=True)

    payment_id: str = Field(..., description="Matched payment")
    invoice_id: str = Field(..., description="Consumed invoice")
    amount: int = Field(..., ge=0, description="Portion of the payment applied to the invoice")
    match_type: MatchType = Field(..., description="Tier that produced the match")
    description: Optional[str] = Field(None, description="Tie-break, window or tolerance notes")
    absorbed_amount: Optional[int] = Field(
        None, gt=0, description="Payment/invoice delta accepted within tolerance"
    )


class _ReconciliationExceptionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str = Field(..., description="Human-readable explanation for finance staff")


class OverpaymentException(_ReconciliationExceptionBase):
    type: Literal["overpayment"] = "overpayment"
    payment_id: str
    invoice_id: str
    amount: int = Field(..., gt=0, description="Amount paid beyond the outstanding balance")


class UnderpaymentException(_ReconciliationExceptionBase):
    type: Literal["underpayment"] = "underpayment"
    payment_id: str
    invoice_id: str
    amount: int = Field(..., gt=0, description="Shortfall left on the invoice")


class OrphanPaymentException(_ReconciliationExceptionBase):
    type: Literal["orphan_payment"] = "orphan_payment"
    payment_id: str
    amount: int = Field(..., ge=0, description="Unapplied payment amount")


class DuplicateReferenceException(_ReconciliationExceptionBase):
    type: Literal["duplicate_reference"] = "duplicate_reference"
    payment_id: str
    reference: str = Field(..., description="Normalized reference shared by the candidates")
    invoice_ids: List[str] = Field(..., min_length=2, description="All candidate invoices")


class UnmatchedInvoiceException(_ReconciliationExceptionBase):
    type: Literal["unmatched_invoice"] = "unmatched_invoice"
    invoice_id: str
    amount: int = Field(..., ge=0, description="Outstanding balance left unpaid")


ReconciliationException = Annotated[
    Union[
        OverpaymentException,
        UnderpaymentException,
        OrphanPaymentException,
        DuplicateReferenceException,
        UnmatchedInvoiceException,
    ],
    Field(discriminator="type"),
]


class DuplicatePaymentGroup(BaseModel):
    """Payments that look like the same money sent more than once. Advisory only."""

    model_config = ConfigDict(frozen=True)

    customer_id: str
    amount: int
    payment_ids: List[str] = Field(..., min_length=2)


class ReconciliationResult(BaseModel):
    """
    Full output of one reconciliation run.

    Every payment appears in exactly one of ``matches`` or an orphan exception
    (and then ``unmatched_payments``). Every invoice appears in exactly one of
    ``matches``, ``unmatched_invoices`` or ``closed_invoices``.
    """

    model_config = ConfigDict(frozen=True)

    tenant_id: Optional[str] = Field(None, description="Tenant the batch belongs to")
    currency: Optional[str] = Field(None, description="Currency of the batch")
    run_at: datetime = Field(default_factory=utc_now, description="Clock value of the run")
    matches: List[MatchResult] = Field(default_factory=list)
    exceptions: List[ReconciliationException] = Field(default_factory=list)
    unmatched_payments: List[Payment] = Field(default_factory=list)
    unmatched_invoices: List[Invoice] = Field(default_factory=list)
    closed_invoices: List[Invoice] = Field(
        default_factory=list, description="Paid, void or zero-balance invoices left out of matching"
    )
    possible_duplicate_payments: List[DuplicatePaymentGroup] = Field(default_factory=list)
    total_amount_received: int = Field(
        default=0, ge=0, description="Sum of every payment in the batch, matched or not"
    )

    def exceptions_of(self, exception_type: ExceptionType) -> list:
        return [e for e in self.exceptions if e.type == exception_type]


# -----------------------------------------------------------------------------
# 4. Report Contracts
# -----------------------------------------------------------------------------
class ReportException(BaseModel):
    """Flat external shape of a reconciliation exception."""

    type: ExceptionType
    payment_id: Optional[str] = None
    invoice_id: Optional[str] = None
    amount: Optional[int] = None
    reference: Optional[str] = None
    invoice_ids: Optional[List[str]] = None
    description: str


class ReportSummary(BaseModel):
    """
    Totals for finance review.

    All amounts are integer minor units of the batch currency.
    """

    total_payments: int = Field(default=0)
    total_amount_received: int = Field(default=0, description="Sum of all payments in the batch")
    total_matches: int = Field(default=0)
    matched_amount: int = Field(default=0, description="Sum of applied amounts")
    matches_by_type: Dict[str, int] = Field(default_factory=dict)
    total_exceptions: int = Field(default=0)
    exceptions_by_type: Dict[str, int] = Field(default_factory=dict)
    unmatched_payment_count: int = Field(default=0)
    unmatched_payment_amount: int = Field(default=0)
    unmatched_invoice_count: int = Field(default=0)
    outstanding_amount: int = Field(default=0, description="Sum over unmatched invoices")
    overpaid_amount: int = Field(default=0)
    underpaid_amount: int = Field(default=0)
    absorbed_amount: int = Field(
        default=0, description="Deltas left unflagged because they were within tolerance"
    )
    exception_rate: float = Field(
        default=0.0, description="Share of payments and open invoices carrying an exception"
    )
    review_status: Literal["CLEAN", "NEEDS_REVIEW"] = Field(default="CLEAN")


class ReconciliationReport(BaseModel):
    """Structured report handed to the PDF/Excel/CSV renderers and notifiers."""

    tenant_id: Optional[str] = None
    currency: Optional[str] = None
    run_at: datetime
    summary: ReportSummary
    matches: List[MatchResult] = Field(default_factory=list)
    exceptions: List[ReportException] = Field(default_factory=list)
    unmatched_payment_ids: List[str] = Field(default_factory=list)
    unmatched_invoice_ids: List[str] = Field(default_factory=list)
    possible_duplicate_payments: List[DuplicatePaymentGroup] = Field(default_factory=list)

    def to_dict(self) -> dict:
        """JSON-ready mapping with unset optional fields omitted."""
        return self.model_dump(mode="json", exclude_none=True)

    def to_json(self, indent: Optional[int] = 2) -> str:
        return self.model_dump_json(exclude_none=True, indent=indent)
