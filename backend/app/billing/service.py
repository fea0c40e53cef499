"""Core service coordinating billing periods, pricing and payment links."""
from __future__ import annotations

import calendar
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, time, timezone, tzinfo
from typing import Any, Dict, Optional, Protocol, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import BillingConfig
from .exceptions import AlreadyPaid, CustomerNotFound, InvalidInput, PeriodNotFound
from .gateway import PreferenceBuilder
from .models import (
    DEFAULT_PLAN_ID,
    BillingAuditEvent,
    BillingAuditEventType,
    BillingOverview,
    BillingPeriod,
    Customer,
    CustomerSummary,
    HistoryEntry,
    InvoiceView,
    LastPaymentView,
    PaymentRecord,
    PeriodStatus,
    PricingBreakdown,
    RateQuote,
    is_valid_period,
    period_document_id,
)
from .pricing import Number, price_breakdown, to_decimal

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 12
AVAILABILITY_DAY = 30
AVAILABILITY_TIME = time(9, 0)


class RateProvider(Protocol):
    """Source of the current exchange rate."""

    def get_rate(self) -> RateQuote:
        ...


class BillingEventLogger(Protocol):
    """Captures structured billing audit events."""

    def log(self, event: BillingAuditEvent) -> None:
        ...


class BillingRepository(Protocol):
    """Document store operations required by the billing service."""

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        ...

    def get_period(self, customer_id: str, period: str) -> Optional[BillingPeriod]:
        ...

    def merge_period(self, customer_id: str, period: str, fields: Dict[str, Any]) -> BillingPeriod:
        """Create or shallow-merge ``fields`` into the period document."""

    def get_last_payment(self, customer_id: str) -> Optional[PaymentRecord]:
        ...

    def list_periods(self, customer_id: str, *, limit: int = HISTORY_LIMIT) -> Sequence[BillingPeriod]:
        ...


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def availability_for(now: datetime, zone: tzinfo) -> datetime:
    """Day 30 of ``now``'s month at 09:00 in ``zone``, clamped to the month end."""

    local_now = now.astimezone(zone)
    last_day = calendar.monthrange(local_now.year, local_now.month)[1]
    day = min(AVAILABILITY_DAY, last_day)
    return datetime.combine(local_now.replace(day=day).date(), AVAILABILITY_TIME, tzinfo=zone)


# ``slots`` support for ``dataclass`` was added in Python 3.10.
_dataclass_kwargs = {"slots": True} if sys.version_info >= (3, 10) else {}


@dataclass(**_dataclass_kwargs)
class BillingService:
    """Owns the ``scheduled -> issued -> paid`` lifecycle of billing periods."""

    repository: BillingRepository
    rates: RateProvider
    preferences: PreferenceBuilder
    event_logger: BillingEventLogger
    config: BillingConfig

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def quote(
        self,
        *,
        price_usd: Optional[Number] = None,
        margin: Optional[Number] = None,
        currency_id: Optional[str] = None,
    ) -> PricingBreakdown:
        """Price a plan at the current rate without persisting anything.

        Each argument left as ``None`` falls back to the configured value.
        ``margin`` is a fraction, so ``0.02`` is a 2% uplift.
        """

        usd = self.config.price_usd if price_usd is None else to_decimal(price_usd, field="price_usd")
        if usd <= 0:
            raise InvalidInput("price_usd must be greater than zero", field="price_usd")
        uplift = self.config.margin_fx if margin is None else to_decimal(margin, field="margin")
        if uplift < 0:
            raise InvalidInput("margin must not be negative", field="margin")
        currency = (currency_id or "").strip().upper() or self.config.currency_id
        return price_breakdown(usd, uplift, self.rates.get_rate(), currency)

    def generate(self, customer_id: str, period: str) -> BillingPeriod:
        customer = self._require_customer(customer_id)
        self._require_period_format(period)
        existing = self.repository.get_period(customer_id, period)
        if existing is not None and existing.is_paid:
            raise AlreadyPaid(customer_id, period)
        return self._issue(customer, period, existing, regenerate=False)

    def regenerate(self, customer_id: str, period: str) -> BillingPeriod:
        customer = self._require_customer(customer_id)
        self._require_period_format(period)
        existing = self.repository.get_period(customer_id, period)
        if existing is None:
            raise PeriodNotFound(customer_id, period)
        if existing.is_paid:
            raise AlreadyPaid(customer_id, period)
        return self._issue(customer, period, existing, regenerate=True)

    def overview(self, customer_id: str, period: str) -> BillingOverview:
        customer = self._require_customer(customer_id)
        summary = CustomerSummary(
            display_name=customer.display_name,
            plan_id=customer.plan_id or DEFAULT_PLAN_ID,
        )

        stored = self.repository.get_period(customer_id, period)
        if stored is None:
            invoice = InvoiceView(
                status=PeriodStatus.SCHEDULED,
                available_at=_utc(availability_for(self._now(), self._customer_zone(customer))),
            )
        else:
            invoice = self._invoice_view(stored)

        payment = self.repository.get_last_payment(customer_id)
        last_payment = None
        if payment is not None:
            last_payment = LastPaymentView(
                period=payment.period,
                amount_local=payment.transaction_amount,
                paid_at=_utc(payment.date_approved),
                invoice_pdf_url=payment.invoice_pdf_url,
            )

        history = [
            HistoryEntry(
                period=record.period,
                status=record.status,
                amount_local=record.amount_local_at_issue,
                paid_at=_utc(record.paid_at),
                invoice_pdf_url=record.invoice_pdf_url,
            )
            for record in self.repository.list_periods(customer_id, limit=HISTORY_LIMIT)
        ]

        return BillingOverview(
            customer=summary,
            period=period,
            invoice=invoice,
            last_payment=last_payment,
            history=history,
        )

    def _issue(
        self,
        customer: Customer,
        period: str,
        existing: Optional[BillingPeriod],
        *,
        regenerate: bool,
    ) -> BillingPeriod:
        customer_id = customer.customer_id
        now = self._now()
        expires_at = now + self.config.expires_window
        fields: Dict[str, Any] = {}

        frozen_amount = existing.amount_local_at_issue if existing is not None else None
        reprice = frozen_amount is None or (regenerate and self.config.reprice_on_regenerate)
        if reprice:
            breakdown = self.quote()
            amount = breakdown.amount_local
            currency = breakdown.currency_id
            fields.update(
                price_usd=breakdown.price_usd,
                fx_rate_base=breakdown.rate_base,
                fx_rate_applied=breakdown.rate_applied,
                fx_margin=breakdown.margin,
                fx_source=breakdown.source,
            )
        else:
            amount = frozen_amount
            currency = (existing.currency_id if existing is not None else None) or self.config.currency_id

        preference = self.preferences.build_preference(
            f"{self.config.item_title} - {period}",
            1,
            amount,
            currency,
            period_document_id(customer_id, period),
            expires_at,
            issued_at=now,
            metadata={
                "customer_id": customer_id,
                "period": period,
                "amount_local": amount,
                **{key: value for key, value in fields.items() if value is not None},
            },
        )

        fields.update(
            customer_id=customer_id,
            period=period,
            status=PeriodStatus.ISSUED,
            amount_local_at_issue=amount,
            currency_id=currency,
            payment_link=preference.payment_link,
            sandbox_payment_link=preference.sandbox_payment_link,
            preference_id=preference.preference_id,
            issued_at=now,
            expires_at=expires_at,
            updated_at=now,
        )
        if regenerate:
            fields["last_regenerated_at"] = now

        stored = self.repository.merge_period(customer_id, period, fields)
        event_type = BillingAuditEventType.PERIOD_REGENERATED if regenerate else BillingAuditEventType.PERIOD_ISSUED
        self.event_logger.log(
            BillingAuditEvent(
                event_type=event_type,
                customer_id=customer_id,
                period=period,
                metadata={
                    "preference_id": preference.preference_id,
                    "amount_local": str(amount),
                    "currency_id": currency,
                    "repriced": str(reprice).lower(),
                },
                occurred_at=now,
            )
        )
        return stored

    def _invoice_view(self, stored: BillingPeriod) -> InvoiceView:
        payment_link = stored.payment_link if stored.status == PeriodStatus.ISSUED else None
        return InvoiceView(
            status=stored.status,
            available_at=_utc(stored.available_at) or _utc(stored.issued_at),
            payment_link=payment_link,
            invoice_pdf_url=stored.invoice_pdf_url,
            issued_at=_utc(stored.issued_at),
            expires_at=_utc(stored.expires_at),
            amount_local_at_issue=stored.amount_local_at_issue,
        )

    def _customer_zone(self, customer: Customer) -> tzinfo:
        if customer.timezone:
            try:
                return ZoneInfo(customer.timezone)
            except (ZoneInfoNotFoundError, ValueError):
                logger.warning(
                    "Unknown customer timezone, using billing offset",
                    extra={"customer_id": customer.customer_id, "customer_timezone": customer.timezone},
                )
        return self.config.fx_timezone

    def _require_customer(self, customer_id: str) -> Customer:
        customer = self.repository.get_customer(customer_id)
        if customer is None:
            raise CustomerNotFound(customer_id)
        return customer

    @staticmethod
    def _require_period_format(period: str) -> None:
        if not is_valid_period(period):
            raise InvalidInput("period must use the YYYY-MM format", period=period)


__all__ = [
    "BillingEventLogger",
    "BillingRepository",
    "BillingService",
    "RateProvider",
    "availability_for",
]
