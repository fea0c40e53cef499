"""Errors raised by the billing period workflow."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass
class BillingError(Exception):
    """Represents an actionable billing failure surfaced to API callers."""

    code: str
    message: str
    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


class RateUnavailable(BillingError):
    def __init__(self, message: str = "No exchange rate source returned a usable value", **detail: Any) -> None:
        super().__init__(
            code="rate_unavailable",
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail or None,
        )


class InvalidInput(BillingError):
    def __init__(self, message: str, **detail: Any) -> None:
        super().__init__(code="invalid_input", message=message, detail=detail or None)


class CustomerNotFound(BillingError):
    def __init__(self, customer_id: str) -> None:
        super().__init__(
            code="customer_not_found",
            message=f"Customer {customer_id} does not exist",
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"customer_id": customer_id},
        )


class PeriodNotFound(BillingError):
    def __init__(self, customer_id: str, period: str) -> None:
        super().__init__(
            code="period_not_found",
            message=f"No billing period {period} for customer {customer_id}",
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"customer_id": customer_id, "period": period},
        )


class AlreadyPaid(BillingError):
    """Raised for issue attempts on a paid period. Callers must not retry."""

    retryable = False

    def __init__(self, customer_id: str, period: str) -> None:
        super().__init__(
            code="already_paid",
            message=f"Billing period {period} is already paid",
            detail={"customer_id": customer_id, "period": period},
        )


class GatewayError(BillingError):
    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(
            code="gateway_error",
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
        )
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


__all__ = [
    "AlreadyPaid",
    "BillingError",
    "CustomerNotFound",
    "GatewayError",
    "InvalidInput",
    "PeriodNotFound",
    "RateUnavailable",
]
