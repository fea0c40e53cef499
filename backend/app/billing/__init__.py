"""Billing domain package: FX pricing, billing periods and payment links."""

from .config import BillingConfig, load_billing_config
from .exceptions import (
    AlreadyPaid,
    BillingError,
    CustomerNotFound,
    GatewayError,
    InvalidInput,
    PeriodNotFound,
    RateUnavailable,
)
from .gateway import (
    DemoPaymentGateway,
    MercadoPagoGateway,
    PaymentGateway,
    PreferenceBuilder,
    create_payment_gateway,
)
from .models import (
    BillingAuditEvent,
    BillingAuditEventType,
    BillingOverview,
    BillingPeriod,
    Customer,
    PaymentPreference,
    PaymentRecord,
    PeriodStatus,
    PricingBreakdown,
    RateQuote,
)
from .pricing import compute_local_price, round2
from .rates import RateQuoter, create_rate_quoter
from .service import BillingEventLogger, BillingRepository, BillingService, RateProvider

__all__ = [
    "AlreadyPaid",
    "BillingAuditEvent",
    "BillingAuditEventType",
    "BillingConfig",
    "BillingError",
    "BillingEventLogger",
    "BillingOverview",
    "BillingPeriod",
    "BillingRepository",
    "BillingService",
    "Customer",
    "CustomerNotFound",
    "DemoPaymentGateway",
    "GatewayError",
    "InvalidInput",
    "MercadoPagoGateway",
    "PaymentGateway",
    "PaymentPreference",
    "PaymentRecord",
    "PeriodNotFound",
    "PeriodStatus",
    "PreferenceBuilder",
    "PricingBreakdown",
    "RateProvider",
    "RateQuote",
    "RateQuoter",
    "RateUnavailable",
    "compute_local_price",
    "create_payment_gateway",
    "create_rate_quoter",
    "load_billing_config",
    "round2",
]
