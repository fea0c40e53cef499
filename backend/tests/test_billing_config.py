from datetime import timedelta, timezone
from decimal import Decimal

import pytest

from backend.app.billing import load_billing_config
from backend.app.billing.config import parse_utc_offset


def test_defaults():
    config = load_billing_config(env={})

    assert config.price_usd == Decimal("49")
    assert config.margin_fx == Decimal("0.02")
    assert config.currency_id == "ARS"
    assert config.expires_hours == 48
    assert config.expires_window == timedelta(hours=48)
    assert config.fx_timezone == timezone(timedelta(hours=-3))
    assert config.fx_timeout_seconds == 5.0
    assert config.reprice_on_regenerate is False
    assert config.has_gateway_credentials is False
    assert config.bearer_token is None


def test_overrides():
    config = load_billing_config(
        env={
            "BILLING_PRICE_USD": "59,90",
            "BILLING_MARGIN_FX": "0.05",
            "BILLING_CURRENCY_ID": "clp",
            "BILLING_EXPIRES_H": "24",
            "BILLING_FX_OFFSET": "+05:30",
            "BILLING_BACK_URL_BASE": "https://app.test/billing/",
            "BILLING_REPRICE_ON_REGENERATE": "yes",
            "MP_ACCESS_TOKEN": "APP_USR-1",
        }
    )

    assert config.price_usd == Decimal("59.90")
    assert config.currency_id == "CLP"
    assert config.expires_window == timedelta(hours=24)
    assert config.fx_timezone == timezone(timedelta(hours=5, minutes=30))
    assert config.back_url_base == "https://app.test/billing"
    assert config.reprice_on_regenerate is True
    assert config.has_gateway_credentials is True


@pytest.mark.parametrize(
    "env",
    [
        {"BILLING_FX_OFFSET": "GMT-3"},
        {"BILLING_PRICE_USD": "free"},
        {"BILLING_PRICE_USD": "0"},
        {"BILLING_MARGIN_FX": "-0.1"},
        {"BILLING_MARGIN_FX": "NaN"},
        {"BILLING_EXPIRES_H": "0"},
        {"BILLING_EXPIRES_H": "two"},
    ],
)
def test_invalid_values_raise(env):
    with pytest.raises(ValueError):
        load_billing_config(env=env)


def test_parse_utc_offset_variants():
    assert parse_utc_offset("Z") == timezone.utc
    assert parse_utc_offset("-0300") == timezone(timedelta(hours=-3))
    with pytest.raises(ValueError):
        parse_utc_offset("+25:00")
