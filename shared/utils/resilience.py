"""
shared/utils/resilience.py
Circuit breakers for downstream collaborators (payment gateway).
"""

import logging

from pybreaker import CircuitBreaker, CircuitBreakerListener

logger = logging.getLogger(__name__)


class _LoggingListener(CircuitBreakerListener):
    def state_change(self, cb, old_state, new_state):
        logger.warning(
            f"Circuit breaker '{cb.name}' changed state: {old_state.name} -> {new_state.name}"
        )


class CircuitBreakerManager:
    """Manages circuit breakers for each downstream service."""

    def __init__(self, fail_max: int = 5, reset_timeout: int = 60):
        self.fail_max = fail_max
        self.reset_timeout = reset_timeout
        self.breakers = {}

    def get_breaker(self, service_name: str) -> CircuitBreaker:
        """Get or create a circuit breaker for a service."""
        if service_name not in self.breakers:
            self.breakers[service_name] = CircuitBreaker(
                fail_max=self.fail_max,  # Open after N consecutive failures
                reset_timeout=self.reset_timeout,
                name=service_name,
                listeners=[_LoggingListener()],
            )
        return self.breakers[service_name]


circuit_breaker_manager = CircuitBreakerManager()
