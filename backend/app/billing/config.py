"""Billing configuration helpers."""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from datetime import timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional

_OFFSET_PATTERN = re.compile(r"^([+-])(\d{2}):?(\d{2})$")


@dataclass(frozen=True)
class BillingConfig:
    """Process-wide billing settings, fixed at startup."""

    price_usd: Decimal
    margin_fx: Decimal
    currency_id: str
    expires_hours: int
    fx_offset: str
    back_url_base: str
    notification_url: Optional[str]
    item_title: str
    reprice_on_regenerate: bool
    bearer_token: Optional[str]
    mp_access_token: Optional[str]
    mp_api_base_url: str
    fx_primary_url: str
    fx_secondary_url: str
    fx_timeout_seconds: float
    gateway_timeout_seconds: float

    @property
    def has_gateway_credentials(self) -> bool:
        return bool(self.mp_access_token)

    @property
    def fx_timezone(self) -> timezone:
        return parse_utc_offset(self.fx_offset)

    @property
    def expires_window(self) -> timedelta:
        return timedelta(hours=self.expires_hours)


def parse_utc_offset(value: str) -> timezone:
    """Parse ``-03:00`` style offsets into a fixed :class:`timezone`."""

    raw = (value or "").strip()
    if raw.upper() in {"Z", "UTC"}:
        return timezone.utc
    match = _OFFSET_PATTERN.match(raw)
    if not match:
        raise ValueError(f"Expected UTC offset like -03:00, got {value!r}")
    sign, hours, minutes = match.groups()
    delta = timedelta(hours=int(hours), minutes=int(minutes))
    if delta >= timedelta(hours=24):
        raise ValueError(f"UTC offset out of range: {value!r}")
    return timezone(-delta if sign == "-" else delta)


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def _to_decimal(value: Optional[str], *, default: str) -> Decimal:
    raw = default if value is None or value == "" else value
    try:
        parsed = Decimal(raw.strip().replace(",", "."))
    except InvalidOperation as exc:
        raise ValueError(f"Expected decimal value, got {value!r}") from exc
    if not parsed.is_finite():
        raise ValueError(f"Expected finite decimal value, got {value!r}")
    return parsed


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    price_usd = _to_decimal(env_mapping.get("BILLING_PRICE_USD"), default="49")
    margin_fx = _to_decimal(env_mapping.get("BILLING_MARGIN_FX"), default="0.02")
    if price_usd <= 0:
        raise ValueError("BILLING_PRICE_USD must be positive")
    if margin_fx < 0:
        raise ValueError("BILLING_MARGIN_FX must be non-negative")

    expires_hours = _to_int(env_mapping.get("BILLING_EXPIRES_H"), default=48)
    if expires_hours < 1:
        raise ValueError("BILLING_EXPIRES_H must be >= 1")

    fx_offset = (env_mapping.get("BILLING_FX_OFFSET") or "-03:00").strip()
    parse_utc_offset(fx_offset)

    back_url_base = env_mapping.get("BILLING_BACK_URL_BASE", "http://localhost:5173/billing")

    return BillingConfig(
        price_usd=price_usd,
        margin_fx=margin_fx,
        currency_id=(env_mapping.get("BILLING_CURRENCY_ID") or "ARS").strip().upper(),
        expires_hours=expires_hours,
        fx_offset=fx_offset,
        back_url_base=back_url_base.rstrip("/"),
        notification_url=env_mapping.get("BILLING_NOTIFICATION_URL") or None,
        item_title=env_mapping.get("BILLING_ITEM_TITLE") or "Servicio mensual",
        reprice_on_regenerate=_to_bool(env_mapping.get("BILLING_REPRICE_ON_REGENERATE"), default=False),
        bearer_token=env_mapping.get("BILLING_BEARER_TOKEN") or None,
        mp_access_token=env_mapping.get("MP_ACCESS_TOKEN") or None,
        mp_api_base_url=(env_mapping.get("MP_API_BASE_URL") or "https://api.mercadopago.com").rstrip("/"),
        fx_primary_url=env_mapping.get("FX_PRIMARY_URL") or "https://criptoya.com/api/dolar",
        fx_secondary_url=env_mapping.get("FX_SECONDARY_URL") or "https://dolarapi.com/v1/dolares/cripto",
        fx_timeout_seconds=max(0.1, _to_float(env_mapping.get("FX_TIMEOUT_SECONDS"), default=5.0)),
        gateway_timeout_seconds=max(0.1, _to_float(env_mapping.get("GATEWAY_TIMEOUT_SECONDS"), default=10.0)),
    )


__all__ = ["BillingConfig", "load_billing_config", "parse_utc_offset"]
