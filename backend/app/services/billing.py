"""Application wiring for the billing service."""
from __future__ import annotations

import logging
from functools import lru_cache

from ..billing import (
    BillingAuditEvent,
    BillingConfig,
    BillingEventLogger,
    BillingService,
    PreferenceBuilder,
    create_payment_gateway,
    create_rate_quoter,
    load_billing_config,
)
from ..billing.repository import PostgresBillingRepository


logger = logging.getLogger("billing")


class LoggingBillingEventLogger(BillingEventLogger):
    """Simple event logger forwarding billing audit events to logging."""

    def log(self, event: BillingAuditEvent) -> None:
        logger.info(
            "Billing event %s customer=%s period=%s metadata=%s",
            event.event_type.value,
            event.customer_id,
            event.period,
            event.metadata,
        )


@lru_cache(maxsize=1)
def get_billing_config() -> BillingConfig:
    return load_billing_config()


@lru_cache(maxsize=1)
def get_billing_service() -> BillingService:
    config = get_billing_config()
    gateway = create_payment_gateway(config)
    logger.info("Billing service configured with gateway=%s", gateway.name)
    return BillingService(
        repository=PostgresBillingRepository(),
        rates=create_rate_quoter(config),
        preferences=PreferenceBuilder.from_config(config, gateway),
        event_logger=LoggingBillingEventLogger(),
        config=config,
    )


__all__ = ["get_billing_config", "get_billing_service", "LoggingBillingEventLogger"]
