"""
Circuit breaker for HTTP transmission.

Opens after 5 consecutive server/connection failures, closes after 60 seconds.
Prevents hammering the Atom endpoint during outages; while open, sends fail
fast as transient errors and the tracker's backoff takes over.
"""
from pybreaker import CircuitBreaker, CircuitBreakerListener
import structlog

logger = structlog.get_logger()


class _StateChangeLogger(CircuitBreakerListener):
    """Log circuit breaker state changes."""

    def state_change(self, cb, old_state, new_state):
        logger.warning(
            "circuit_breaker_state_change",
            breaker=cb.name,
            old_state=getattr(old_state, 'name', old_state),
            new_state=getattr(new_state, 'name', new_state)
        )


def create_circuit_breaker(
    name: str = "atom_http",
    fail_max: int = 5,
    timeout_duration: int = 60
) -> CircuitBreaker:
    """
    Create a circuit breaker instance.

    Args:
        name: Breaker name used in logs
        fail_max: Number of failures before opening (default: 5)
        timeout_duration: Seconds before attempting to close (default: 60)

    Returns:
        CircuitBreaker instance
    """
    breaker = CircuitBreaker(
        fail_max=fail_max,
        reset_timeout=timeout_duration,
        name=name,
        listeners=[_StateChangeLogger()]
    )
    logger.info(
        "circuit_breaker_created",
        name=name,
        fail_max=fail_max,
        timeout_duration=timeout_duration
    )
    return breaker


def is_circuit_open(breaker: CircuitBreaker) -> bool:
    """
    Check if circuit breaker is open.

    Returns:
        True if circuit is open (should not attempt requests)
    """
    return breaker.current_state == 'open'
