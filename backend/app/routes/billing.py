"""API routes exposing billing period functionality."""
from __future__ import annotations

import hmac
import json
import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Dict, Iterator, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query, Request, Response, status

from ..billing import BillingError, BillingOverview
from ..schemas.billing import HealthResponse, PeriodIssueResponse, QuoteResponse
from ..services.billing import get_billing_config, get_billing_service

logger = logging.getLogger("billing")

PERIOD_REGEX = r"^\d{4}-(0[1-9]|1[0-2])$"

router = APIRouter(tags=["billing"])


def require_billing_token(authorization: Optional[str] = Header(default=None)) -> None:
    expected_token = get_billing_config().bearer_token
    if not expected_token:
        return
    expected = f"Bearer {expected_token}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail={"error": "unauthorized"})


@contextmanager
def _translate_errors(operation: str, *, customer_id: Optional[str] = None, period: Optional[str] = None) -> Iterator[None]:
    try:
        yield
    except BillingError as exc:
        logger.info(
            "Billing %s rejected: %s",
            operation,
            exc.code,
            extra={"customer_id": customer_id, "billing_period": period},
        )
        raise exc.to_http_exception() from exc
    except Exception as exc:
        logger.exception(
            "Billing %s failed",
            operation,
            extra={"customer_id": customer_id, "billing_period": period},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "internal_error"},
        ) from exc


@router.get("/healthz", response_model=HealthResponse)
def healthz() -> HealthResponse:
    return HealthResponse()


@router.get("/bff/billing/quote", response_model=QuoteResponse)
def get_quote(
    price_usd: Optional[Decimal] = Query(None, alias="priceUsd", description="USD price to quote instead of the plan price"),
    margin: Optional[Decimal] = Query(None, alias="marginFxPct", description="FX uplift as a fraction, 0.02 is 2%"),
    currency_id: Optional[str] = Query(None, alias="currencyId", max_length=8),
) -> QuoteResponse:
    service = get_billing_service()
    with _translate_errors("quote"):
        breakdown = service.quote(price_usd=price_usd, margin=margin, currency_id=currency_id)
    return QuoteResponse.from_breakdown(breakdown)


@router.get("/bff/billing/{period}/overview", response_model=BillingOverview)
def get_overview(
    period: str = Path(pattern=PERIOD_REGEX),
    customer_id: str = Header(alias="X-Customer-Id"),
) -> BillingOverview:
    service = get_billing_service()
    with _translate_errors("overview", customer_id=customer_id, period=period):
        overview = service.overview(customer_id, period)
    return overview


@router.post("/bff/billing/{period}/generate", response_model=PeriodIssueResponse)
def generate_period(
    period: str = Path(pattern=PERIOD_REGEX),
    customer_id: str = Header(alias="X-Customer-Id"),
    _authorized: None = Depends(require_billing_token),
) -> PeriodIssueResponse:
    service = get_billing_service()
    with _translate_errors("generate", customer_id=customer_id, period=period):
        stored = service.generate(customer_id, period)
    return PeriodIssueResponse.from_period(stored)


@router.post("/bff/billing/{period}/regenerate", response_model=PeriodIssueResponse)
def regenerate_period(
    period: str = Path(pattern=PERIOD_REGEX),
    customer_id: str = Header(alias="X-Customer-Id"),
    _authorized: None = Depends(require_billing_token),
) -> PeriodIssueResponse:
    service = get_billing_service()
    with _translate_errors("regenerate", customer_id=customer_id, period=period):
        stored = service.regenerate(customer_id, period)
    return PeriodIssueResponse.from_period(stored)


@router.post("/billing/webhook")
async def receive_webhook(request: Request) -> Response:
    """Log gateway notifications. Always acknowledged so the gateway stops retrying."""

    payload: Dict[str, Any] = {}
    try:
        body = await request.body()
        if body:
            decoded = json.loads(body.decode("utf-8"))
            if isinstance(decoded, dict):
                payload = decoded
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Billing webhook body is not JSON")
    if not payload:
        payload = dict(request.query_params)
    logger.info("Billing webhook received", extra={"webhook_payload": payload})
    return Response(content="OK", media_type="text/plain", status_code=status.HTTP_200_OK)
