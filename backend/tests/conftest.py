"""Shared fakes for billing tests."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pytest

from backend.app.billing import (
    BillingAuditEvent,
    BillingEventLogger,
    BillingPeriod,
    BillingRepository,
    BillingService,
    Customer,
    PaymentGateway,
    PaymentPreference,
    PaymentRecord,
    PreferenceBuilder,
    RateQuote,
    RateUnavailable,
    load_billing_config,
)
from backend.app.billing.models import period_document_id

FIXED_NOW = datetime(2026, 10, 18, 15, 0, tzinfo=timezone.utc)


class InMemoryBillingRepository(BillingRepository):
    def __init__(self) -> None:
        self.customers: Dict[str, Customer] = {}
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.payments: List[PaymentRecord] = []
        self.merge_calls = 0

    def add_customer(self, customer_id: str, **fields: Any) -> Customer:
        customer = Customer(customer_id=customer_id, **fields)
        self.customers[customer_id] = customer
        return customer

    def put_period(self, customer_id: str, period: str, **fields: Any) -> None:
        self.documents[period_document_id(customer_id, period)] = {
            "customer_id": customer_id,
            "period": period,
            **fields,
        }

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        return self.customers.get(customer_id)

    def get_period(self, customer_id: str, period: str) -> Optional[BillingPeriod]:
        document = self.documents.get(period_document_id(customer_id, period))
        return BillingPeriod.model_validate(document) if document is not None else None

    def merge_period(self, customer_id: str, period: str, fields: Dict[str, Any]) -> BillingPeriod:
        self.merge_calls += 1
        key = period_document_id(customer_id, period)
        merged = {**self.documents.get(key, {}), **fields}
        self.documents[key] = merged
        return BillingPeriod.model_validate(merged)

    def get_last_payment(self, customer_id: str) -> Optional[PaymentRecord]:
        matching = [payment for payment in self.payments if payment.customer_id == customer_id]
        if not matching:
            return None
        return max(matching, key=lambda payment: payment.date_approved or datetime.min.replace(tzinfo=timezone.utc))

    def list_periods(self, customer_id: str, *, limit: int = 12) -> Sequence[BillingPeriod]:
        records = [
            BillingPeriod.model_validate(document)
            for document in self.documents.values()
            if document["customer_id"] == customer_id
        ]
        records.sort(key=lambda record: record.period, reverse=True)
        return records[:limit]


class FakeRateProvider:
    def __init__(self, value: str = "1000", source: str = "fake") -> None:
        self.value = Decimal(value)
        self.source = source
        self.calls = 0
        self.unavailable = False

    def get_rate(self) -> RateQuote:
        self.calls += 1
        if self.unavailable:
            raise RateUnavailable()
        return RateQuote(value=self.value, source=self.source)


class FakeGateway(PaymentGateway):
    name = "fake"

    def __init__(self) -> None:
        self.requests: List[Mapping[str, Any]] = []
        self.error: Optional[Exception] = None

    def create_preference(self, request: Mapping[str, Any]) -> PaymentPreference:
        if self.error is not None:
            raise self.error
        self.requests.append(request)
        preference_id = f"pref_{len(self.requests)}"
        return PaymentPreference(
            preference_id=preference_id,
            payment_link=f"https://gateway.test/checkout/{preference_id}",
        )


class FakeEventLogger(BillingEventLogger):
    def __init__(self) -> None:
        self.events: List[BillingAuditEvent] = []

    def log(self, event: BillingAuditEvent) -> None:
        self.events.append(event)


def build_service(env: Optional[Dict[str, str]] = None):
    config = load_billing_config(env=env or {})
    repository = InMemoryBillingRepository()
    rates = FakeRateProvider()
    gateway = FakeGateway()
    event_logger = FakeEventLogger()
    service = BillingService(
        repository=repository,
        rates=rates,
        preferences=PreferenceBuilder.from_config(config, gateway),
        event_logger=event_logger,
        config=config,
    )
    return repository, rates, gateway, event_logger, service


@pytest.fixture
def fixed_now(monkeypatch):
    monkeypatch.setattr(BillingService, "_now", lambda self: FIXED_NOW)
    return FIXED_NOW


@pytest.fixture
def billing_components(fixed_now):
    repository, rates, gateway, event_logger, service = build_service()
    repository.add_customer("cus_001", display_name="Acme SRL", plan_id="pro_monthly")
    return repository, rates, gateway, event_logger, service
