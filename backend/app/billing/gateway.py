"""Payment gateway adapters and the preference builder."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone, tzinfo
from decimal import Decimal
from http import client as http_client
from typing import Any, Dict, Mapping, Optional
from urllib import error as urllib_error, parse as urllib_parse, request as urllib_request

from .config import BillingConfig
from .exceptions import GatewayError
from .models import PaymentPreference

logger = logging.getLogger(__name__)


def encode_instant(moment: datetime, offset: tzinfo) -> str:
    """Render ``moment`` in ``offset`` without changing the instant it denotes.

    Naive datetimes are taken to be UTC.
    """

    aware = moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)
    return aware.astimezone(offset).isoformat(timespec="milliseconds")


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Unserializable value {value!r}")


class PaymentGateway:
    """Capability interface for creating payment preferences."""

    name = "base"

    def create_preference(self, request: Mapping[str, Any]) -> PaymentPreference:
        raise NotImplementedError

    def describe(self) -> Dict[str, str]:
        return {"payment_gateway": self.name}


class DemoPaymentGateway(PaymentGateway):
    """Gateway used when no credentials are configured; links are not payable."""

    name = "demo"

    def __init__(self, *, base_url: str = "https://billing.local/demo/checkout") -> None:
        self.base_url = base_url.rstrip("/")

    def create_preference(self, request: Mapping[str, Any]) -> PaymentPreference:
        reference = str(request.get("external_reference") or "unreferenced")
        link = f"{self.base_url}/{urllib_parse.quote(reference, safe='')}"
        logger.info(
            "Demo preference created",
            extra={"external_reference": reference, "payment_gateway": self.name},
        )
        return PaymentPreference(
            preference_id=f"demo-{reference}",
            payment_link=link,
            sandbox_payment_link=link,
        )


class MercadoPagoGateway(PaymentGateway):
    """Checkout Pro preferences through the Mercado Pago REST API."""

    name = "mercadopago"

    def __init__(self, *, access_token: str, api_base_url: str, timeout: float) -> None:
        self.access_token = access_token
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout = timeout

    def create_preference(self, request: Mapping[str, Any]) -> PaymentPreference:
        body = json.dumps(dict(request), default=_json_default).encode("utf-8")
        try:
            req = urllib_request.Request(
                f"{self.api_base_url}/checkout/preferences",
                data=body,
                method="POST",
                headers={
                    "Authorization": f"Bearer {self.access_token}",
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )
            with urllib_request.urlopen(req, timeout=self.timeout) as response:
                payload = json.loads(response.read().decode("utf-8"))
        except urllib_error.HTTPError as exc:
            raise GatewayError(f"Mercado Pago rejected preference: HTTP {exc.code}", cause=exc) from exc
        except (urllib_error.URLError, http_client.HTTPException, TimeoutError, OSError) as exc:
            raise GatewayError("Mercado Pago request failed", cause=exc) from exc
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise GatewayError("Mercado Pago returned an unreadable response", cause=exc) from exc
        except ValueError as exc:
            raise GatewayError(f"invalid Mercado Pago API url {self.api_base_url!r}", cause=exc) from exc

        if not isinstance(payload, dict):
            raise GatewayError("Mercado Pago returned an unexpected response")
        preference_id = payload.get("id")
        init_point = payload.get("init_point")
        if not preference_id or not init_point:
            raise GatewayError("Mercado Pago response is missing id or init_point")
        return PaymentPreference(
            preference_id=str(preference_id),
            payment_link=str(init_point),
            sandbox_payment_link=payload.get("sandbox_init_point"),
        )


def create_payment_gateway(config: BillingConfig) -> PaymentGateway:
    if config.has_gateway_credentials:
        return MercadoPagoGateway(
            access_token=config.mp_access_token or "",
            api_base_url=config.mp_api_base_url,
            timeout=config.gateway_timeout_seconds,
        )
    logger.warning("MP_ACCESS_TOKEN not configured; using demo payment gateway")
    return DemoPaymentGateway()


class PreferenceBuilder:
    """Translates an issued period into a gateway preference request."""

    def __init__(
        self,
        gateway: PaymentGateway,
        *,
        offset: tzinfo,
        back_url_base: str,
        notification_url: Optional[str] = None,
    ) -> None:
        self.gateway = gateway
        self.offset = offset
        self.back_url_base = back_url_base.rstrip("/")
        self.notification_url = notification_url

    @classmethod
    def from_config(cls, config: BillingConfig, gateway: PaymentGateway) -> "PreferenceBuilder":
        return cls(
            gateway,
            offset=config.fx_timezone,
            back_url_base=config.back_url_base,
            notification_url=config.notification_url,
        )

    def build_request(
        self,
        *,
        title: str,
        quantity: int,
        unit_price: Decimal,
        currency: str,
        external_reference: str,
        expires_at: datetime,
        issued_at: Optional[datetime] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        window_start = issued_at or datetime.now(timezone.utc)
        request: Dict[str, Any] = {
            "items": [
                {
                    "title": title,
                    "quantity": quantity,
                    "unit_price": unit_price,
                    "currency_id": currency,
                }
            ],
            "external_reference": external_reference,
            "back_urls": {
                "success": f"{self.back_url_base}/success",
                "failure": f"{self.back_url_base}/failure",
                "pending": f"{self.back_url_base}/pending",
            },
            "auto_return": "approved",
            "expires": True,
            "expiration_date_from": encode_instant(window_start, self.offset),
            "expiration_date_to": encode_instant(expires_at, self.offset),
            "metadata": dict(metadata or {}),
        }
        if self.notification_url:
            request["notification_url"] = self.notification_url
        return request

    def build_preference(
        self,
        title: str,
        quantity: int,
        unit_price: Decimal,
        currency: str,
        external_reference: str,
        expires_at: datetime,
        *,
        issued_at: Optional[datetime] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> PaymentPreference:
        request = self.build_request(
            title=title,
            quantity=quantity,
            unit_price=unit_price,
            currency=currency,
            external_reference=external_reference,
            expires_at=expires_at,
            issued_at=issued_at,
            metadata=metadata,
        )
        try:
            preference = self.gateway.create_preference(request)
        except GatewayError:
            raise
        except Exception as exc:
            raise GatewayError(f"{self.gateway.name} preference creation failed", cause=exc) from exc
        logger.info(
            "Payment preference created",
            extra={
                "external_reference": external_reference,
                "preference_id": preference.preference_id,
                "payment_gateway": self.gateway.name,
            },
        )
        return preference


__all__ = [
    "DemoPaymentGateway",
    "MercadoPagoGateway",
    "PaymentGateway",
    "PreferenceBuilder",
    "create_payment_gateway",
    "encode_instant",
]
