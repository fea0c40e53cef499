"""Domain models for the billing period system."""
from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

PERIOD_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
DEFAULT_PLAN_ID = "basic_startup"


def is_valid_period(period: str) -> bool:
    return bool(PERIOD_PATTERN.match(period or ""))


def period_document_id(customer_id: str, period: str) -> str:
    """Deterministic key shared by the period document and the gateway reference."""
    return f"{customer_id}_{period}"


def period_for(moment: datetime) -> str:
    return f"{moment.year:04d}-{moment.month:02d}"


class PeriodStatus(str, Enum):
    """Lifecycle status of a customer billing period."""

    SCHEDULED = "scheduled"
    ISSUED = "issued"
    PAID = "paid"


class BillingAuditEventType(str, Enum):
    """Audit event categories emitted by the billing subsystem."""

    PERIOD_ISSUED = "period_issued"
    PERIOD_REGENERATED = "period_regenerated"


class Customer(BaseModel):
    """Read-only customer record owned by the external directory."""

    customer_id: str
    display_name: Optional[str] = None
    plan_id: Optional[str] = None
    timezone: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class BillingPeriod(BaseModel):
    """Stored state of one ``(customer_id, period)`` pair."""

    customer_id: str
    period: str
    status: PeriodStatus = PeriodStatus.SCHEDULED
    amount_local_at_issue: Optional[Decimal] = None
    currency_id: Optional[str] = None
    payment_link: Optional[str] = None
    sandbox_payment_link: Optional[str] = None
    preference_id: Optional[str] = None
    issued_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    last_regenerated_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    invoice_pdf_url: Optional[str] = None
    available_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    price_usd: Optional[Decimal] = None
    fx_rate_base: Optional[Decimal] = None
    fx_rate_applied: Optional[Decimal] = None
    fx_margin: Optional[Decimal] = None
    fx_source: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    @field_validator("status", mode="before")
    @classmethod
    def _default_status(cls, value: object) -> object:
        return value or PeriodStatus.SCHEDULED

    @property
    def document_id(self) -> str:
        return period_document_id(self.customer_id, self.period)

    @property
    def is_paid(self) -> bool:
        return self.status == PeriodStatus.PAID


class PaymentRecord(BaseModel):
    """Append-only record of an approved payment."""

    customer_id: str
    period: Optional[str] = None
    transaction_amount: Optional[Decimal] = None
    date_approved: Optional[datetime] = None
    invoice_pdf_url: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class RateQuote(BaseModel):
    """Exchange rate obtained for a single pricing request."""

    value: Decimal = Field(gt=0)
    source: str

    model_config = ConfigDict(frozen=True)


class PricingBreakdown(BaseModel):
    """Intermediate values of a local price computation."""

    price_usd: Decimal
    margin: Decimal
    rate_base: Decimal
    rate_applied: Decimal
    amount_local: Decimal
    currency_id: str
    source: str

    model_config = ConfigDict(frozen=True)


class PaymentPreference(BaseModel):
    """Gateway preference created for an issued period."""

    preference_id: str
    payment_link: str
    sandbox_payment_link: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class BillingAuditEvent(BaseModel):
    """Structured audit event for analytics and notifications."""

    event_type: BillingAuditEventType
    customer_id: str
    period: str
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class CustomerSummary(BaseModel):
    display_name: Optional[str] = None
    plan_id: str = DEFAULT_PLAN_ID

    model_config = ConfigDict(frozen=True)


class InvoiceView(BaseModel):
    status: PeriodStatus
    available_at: Optional[datetime] = None
    payment_link: Optional[str] = None
    invoice_pdf_url: Optional[str] = None
    issued_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    amount_local_at_issue: Optional[Decimal] = None

    model_config = ConfigDict(frozen=True)


class LastPaymentView(BaseModel):
    period: Optional[str] = None
    amount_local: Optional[Decimal] = None
    paid_at: Optional[datetime] = None
    invoice_pdf_url: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class HistoryEntry(BaseModel):
    period: str
    status: PeriodStatus
    amount_local: Optional[Decimal] = None
    paid_at: Optional[datetime] = None
    invoice_pdf_url: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class BillingOverview(BaseModel):
    """Combined read view of a customer's billing state for one period."""

    customer: CustomerSummary
    period: str
    invoice: InvoiceView
    last_payment: Optional[LastPaymentView] = Field(default=None, alias="lastPayment")
    history: List[HistoryEntry] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, frozen=True)
