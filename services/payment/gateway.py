"""
services/payment/gateway.py
Payment gateway contract.

Only a simulated gateway exists: in "immediate" settlement mode it settles
on the spot and hands back a `sim_…` transaction id; in "webhook" mode it
accepts the charge and the outcome arrives later on POST /payments/{id}/webhook.
Calls go through a circuit breaker so a failing gateway degrades to 503.
"""

import logging
import secrets
import string
from dataclasses import dataclass
from typing import Optional

from config.settings import settings
from shared.utils.resilience import circuit_breaker_manager

logger = logging.getLogger(__name__)

GATEWAY_NAME = "payment_gateway"
_ALPHABET = string.ascii_lowercase + string.digits


@dataclass
class Settlement:
    settled: bool
    transaction_id: Optional[str] = None


def _simulated_transaction_id() -> str:
    return "sim_" + "".join(secrets.choice(_ALPHABET) for _ in range(13))


class SimulatedGateway:
    def __init__(self, mode: Optional[str] = None):
        self.mode = mode or settings.PAYMENT_SETTLEMENT_MODE

    def _charge(self, reference: str, amount) -> Settlement:
        if self.mode == "webhook":
            logger.info(f"Payment {reference} submitted, awaiting gateway callback")
            return Settlement(settled=False)
        transaction_id = _simulated_transaction_id()
        logger.info(f"Payment {reference} settled ({amount}), transaction {transaction_id}")
        return Settlement(settled=True, transaction_id=transaction_id)

    def charge(self, reference: str, amount) -> Settlement:
        breaker = circuit_breaker_manager.get_breaker(GATEWAY_NAME)
        return breaker.call(self._charge, reference, amount)


def get_gateway() -> SimulatedGateway:
    return SimulatedGateway()
