"""Local currency pricing from a USD list price and an FX rate."""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from .exceptions import InvalidInput
from .models import PricingBreakdown, RateQuote

Number = Union[Decimal, float, int, str]

CENT = Decimal("0.01")
# Bias applied before rounding so values like 1.005 stored as 1.00499... still round up.
ROUNDING_EPSILON = Decimal("1e-9")


def to_decimal(value: Number, *, field: str = "value") -> Decimal:
    """Convert ``value`` to a finite :class:`Decimal` or raise :class:`InvalidInput`."""

    if isinstance(value, bool):
        raise InvalidInput(f"{field} must be numeric", field=field)
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidInput(f"{field} must be numeric", field=field) from exc
    if not result.is_finite():
        raise InvalidInput(f"{field} must be finite", field=field)
    return result


def round2(value: Number) -> Decimal:
    """Round half-up to two decimal places."""

    amount = to_decimal(value)
    return (amount + ROUNDING_EPSILON).quantize(CENT, rounding=ROUND_HALF_UP)


def applied_rate(rate: Number, margin: Number) -> Decimal:
    return round2(to_decimal(rate, field="rate") * (1 + to_decimal(margin, field="margin")))


def compute_local_price(usd_price: Number, margin: Number, rate: Number) -> Decimal:
    """Return ``round2(usd_price * round2(rate * (1 + margin)))``.

    ``margin`` is a fraction, so ``0.02`` is a 2% uplift on the base rate.
    """

    price = to_decimal(usd_price, field="usd_price")
    return round2(price * applied_rate(rate, margin))


def price_breakdown(usd_price: Number, margin: Number, quote: RateQuote, currency_id: str) -> PricingBreakdown:
    price = to_decimal(usd_price, field="usd_price")
    margin_value = to_decimal(margin, field="margin")
    rate_applied = applied_rate(quote.value, margin_value)
    return PricingBreakdown(
        price_usd=price,
        margin=margin_value,
        rate_base=quote.value,
        rate_applied=rate_applied,
        amount_local=round2(price * rate_applied),
        currency_id=currency_id,
        source=quote.source,
    )


__all__ = ["applied_rate", "compute_local_price", "price_breakdown", "round2", "to_decimal"]
