"""Interfaces to systems outside the scheduling engine.

Payments and provider management live elsewhere. The defaults here only log,
which is what a deployment without those integrations gets.
"""

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class PaymentInitiator(Protocol):
    def initiate_payment(self, appointment) -> None:
        """Start payment authorization for a pending appointment.

        The payment system is expected to call back into ``confirm_booking``
        once authorization succeeds.
        """


class ProviderManagement(Protocol):
    def suspend_provider(self, provider_id: str, no_show_count: int) -> None:
        ...


class LoggingPaymentInitiator:
    def initiate_payment(self, appointment) -> None:
        logger.info(
            'Payment initiation requested for appointment %s (%s)',
            appointment.id,
            appointment.price,
        )


class LoggingProviderManagement:
    def suspend_provider(self, provider_id: str, no_show_count: int) -> None:
        logger.warning('Provider %s suspended after %d no-show reports', provider_id, no_show_count)


default_payment_initiator = LoggingPaymentInitiator()
default_provider_management = LoggingProviderManagement()
