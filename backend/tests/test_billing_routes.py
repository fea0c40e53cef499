from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest
from fastapi import HTTPException

from backend.app.billing import load_billing_config
from backend.app.routes import billing as billing_routes
from backend.app.schemas.billing import PeriodIssueResponse, QuoteResponse

from conftest import build_service


@pytest.fixture
def routed_service(monkeypatch, fixed_now):
    repository, rates, gateway, event_logger, service = build_service()
    repository.add_customer("cus_001", display_name="Acme SRL")
    monkeypatch.setattr(billing_routes, "get_billing_service", lambda: service)
    monkeypatch.setattr(billing_routes, "get_billing_config", lambda: load_billing_config(env={"BILLING_BEARER_TOKEN": "s3cret"}))
    return repository, rates, gateway, service


def test_generate_route_returns_issued_period(routed_service):
    response = billing_routes.generate_period(period="2026-10", customer_id="cus_001", _authorized=None)

    assert isinstance(response, PeriodIssueResponse)
    assert response.status.value == "issued"
    assert response.amount_local_at_issue == Decimal("49980.00")
    assert response.preference_id == "pref_1"
    assert response.model_dump(by_alias=True)["paymentLink"].startswith("https://gateway.test/")


def test_regenerate_route_maps_missing_period_to_404(routed_service):
    with pytest.raises(HTTPException) as excinfo:
        billing_routes.regenerate_period(period="2026-10", customer_id="cus_001", _authorized=None)

    assert excinfo.value.status_code == 404
    assert excinfo.value.detail["error"] == "period_not_found"


def test_generate_route_maps_paid_period_to_400(routed_service):
    repository, _, _, _ = routed_service
    repository.put_period("cus_001", "2026-09", status="paid")

    with pytest.raises(HTTPException) as excinfo:
        billing_routes.generate_period(period="2026-09", customer_id="cus_001", _authorized=None)

    assert excinfo.value.status_code == 400
    assert excinfo.value.detail["error"] == "already_paid"


def test_unexpected_errors_are_opaque(routed_service, monkeypatch):
    class _BrokenService:
        def overview(self, customer_id, period):
            raise RuntimeError("database unreachable")

    monkeypatch.setattr(billing_routes, "get_billing_service", lambda: _BrokenService())

    with pytest.raises(HTTPException) as excinfo:
        billing_routes.get_overview(period="2026-10", customer_id="cus_001")

    assert excinfo.value.status_code == 500
    assert excinfo.value.detail == {"error": "internal_error"}


def test_overview_route_for_unknown_customer(routed_service):
    with pytest.raises(HTTPException) as excinfo:
        billing_routes.get_overview(period="2026-10", customer_id="cus_missing")

    assert excinfo.value.status_code == 404


def test_quote_route(routed_service):
    response = billing_routes.get_quote(price_usd=None, margin=None, currency_id=None)

    assert isinstance(response, QuoteResponse)
    assert response.model_dump(by_alias=True)["amountLocal"] == Decimal("49980.00")


def test_quote_route_accepts_overrides(routed_service):
    response = billing_routes.get_quote(price_usd=Decimal("100"), margin=Decimal("0.05"), currency_id="usd")

    body = response.model_dump(by_alias=True)
    assert body["priceUsd"] == Decimal("100")
    assert body["rateApplied"] == Decimal("1050.00")
    assert body["amountLocal"] == Decimal("105000.00")
    assert body["currencyId"] == "USD"


def test_quote_route_rejects_negative_margin(routed_service):
    with pytest.raises(HTTPException) as excinfo:
        billing_routes.get_quote(price_usd=None, margin=Decimal("-0.10"), currency_id=None)

    assert excinfo.value.status_code == 400
    assert excinfo.value.detail["error"] == "invalid_input"


def test_rate_outage_maps_to_503(routed_service):
    _, rates, _, _ = routed_service
    rates.unavailable = True

    with pytest.raises(HTTPException) as excinfo:
        billing_routes.generate_period(period="2026-10", customer_id="cus_001", _authorized=None)

    assert excinfo.value.status_code == 503


def test_bearer_token_is_enforced(routed_service):
    billing_routes.require_billing_token(authorization="Bearer s3cret")

    for header in (None, "Bearer wrong", "s3cret"):
        with pytest.raises(HTTPException) as excinfo:
            billing_routes.require_billing_token(authorization=header)
        assert excinfo.value.status_code == 401


def test_bearer_token_optional_when_unset(monkeypatch):
    monkeypatch.setattr(billing_routes, "get_billing_config", lambda: load_billing_config(env={}))

    assert billing_routes.require_billing_token(authorization=None) is None


class _FakeRequest:
    def __init__(self, body: bytes, query_params=None) -> None:
        self._body = body
        self.query_params = query_params or {}

    async def body(self) -> bytes:
        return self._body


def test_webhook_acknowledges_any_payload():
    for request in (
        _FakeRequest(b'{"type": "payment", "data": {"id": "1"}}'),
        _FakeRequest(b"not json", {"topic": "payment", "id": "2"}),
        _FakeRequest(b""),
    ):
        response = asyncio.run(billing_routes.receive_webhook(request))
        assert response.status_code == 200
        assert response.body == b"OK"
