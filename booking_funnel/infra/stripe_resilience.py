import stripe

from booking_funnel.settings import settings
from booking_funnel.shared.circuit_breaker import CircuitBreaker


# Declines and rejected requests mean Stripe answered; only outages count toward opening.
STRIPE_CLIENT_ERRORS = (stripe.CardError, stripe.InvalidRequestError, stripe.IdempotencyError)

stripe_circuit = CircuitBreaker(
    name="stripe",
    failure_threshold=settings.stripe_circuit_failure_threshold,
    recovery_seconds=settings.stripe_circuit_recovery_seconds,
    window_seconds=settings.stripe_circuit_window_seconds,
    half_open_max_calls=settings.stripe_circuit_half_open_max_calls,
    timeout_seconds=settings.stripe_timeout_seconds,
    ignored_exceptions=STRIPE_CLIENT_ERRORS,
)
