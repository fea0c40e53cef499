"""API schemas for billing endpoints."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing import BillingPeriod, PeriodStatus, PricingBreakdown


class PeriodIssueResponse(BaseModel):
    ok: bool = True
    period: str
    status: PeriodStatus
    preference_id: Optional[str] = Field(alias="preferenceId", default=None)
    payment_link: Optional[str] = Field(alias="paymentLink", default=None)
    sandbox_payment_link: Optional[str] = Field(alias="sandboxPaymentLink", default=None)
    amount_local_at_issue: Optional[Decimal] = Field(alias="amountLocalAtIssue", default=None)
    currency_id: Optional[str] = Field(alias="currencyId", default=None)
    issued_at: Optional[datetime] = Field(alias="issuedAt", default=None)
    expires_at: Optional[datetime] = Field(alias="expiresAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_period(cls, period: BillingPeriod) -> "PeriodIssueResponse":
        return cls(
            period=period.period,
            status=period.status,
            preference_id=period.preference_id,
            payment_link=period.payment_link,
            sandbox_payment_link=period.sandbox_payment_link,
            amount_local_at_issue=period.amount_local_at_issue,
            currency_id=period.currency_id,
            issued_at=period.issued_at,
            expires_at=period.expires_at,
        )


class QuoteResponse(BaseModel):
    price_usd: Decimal = Field(alias="priceUsd")
    margin_fx: Decimal = Field(alias="marginFx")
    rate_base: Decimal = Field(alias="rateBase")
    rate_applied: Decimal = Field(alias="rateApplied")
    amount_local: Decimal = Field(alias="amountLocal")
    currency_id: str = Field(alias="currencyId")
    rate_source: str = Field(alias="rateSource")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_breakdown(cls, breakdown: PricingBreakdown) -> "QuoteResponse":
        return cls(
            price_usd=breakdown.price_usd,
            margin_fx=breakdown.margin,
            rate_base=breakdown.rate_base,
            rate_applied=breakdown.rate_applied,
            amount_local=breakdown.amount_local,
            currency_id=breakdown.currency_id,
            rate_source=breakdown.source,
        )


class HealthResponse(BaseModel):
    ok: bool = True
    service: str = "billing"
