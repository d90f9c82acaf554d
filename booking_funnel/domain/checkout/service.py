import logging
import uuid
from typing import Any

import stripe

from booking_funnel.domain.checkout.schemas import CheckoutRequest, CheckoutResponse
from booking_funnel.domain.errors import PaymentProviderError
from booking_funnel.infra.stripe_client import call_stripe_client_method
from booking_funnel.infra.stripe_idempotency import make_stripe_idempotency_key
from booking_funnel.settings import settings
from booking_funnel.shared.circuit_breaker import CircuitBreakerOpenError

logger = logging.getLogger(__name__)

NOT_CONFIGURED_MESSAGE = "Payment system not configured. Please contact support."
CONFIGURATION_MESSAGE = "Payment configuration error. Please contact support."
INVALID_REQUEST_MESSAGE = "Invalid payment request."
GENERIC_MESSAGE = "Payment processing failed. Please try again."


def split_deposit(total_amount: float, deposit_percent: float) -> tuple[int, int, int]:
    """Return ``(total_cents, deposit_cents, remaining_cents)``; the two parts always sum to the total."""
    total_cents = int(round(total_amount * 100))
    deposit_cents = int(round(total_amount * deposit_percent * 100))
    return total_cents, deposit_cents, total_cents - deposit_cents


def _field(source: Any, key: str) -> Any:
    if isinstance(source, dict):
        return source.get(key)
    return getattr(source, key, None)


def _as_metadata(values: dict[str, Any]) -> dict[str, str]:
    return {key: "" if value is None else str(value) for key, value in values.items()}


def _map_stripe_error(exc: Exception) -> PaymentProviderError:
    if isinstance(exc, PaymentProviderError):
        return exc
    if isinstance(exc, stripe.AuthenticationError):
        return PaymentProviderError(kind="configuration", message=CONFIGURATION_MESSAGE)
    if isinstance(exc, stripe.InvalidRequestError):
        return PaymentProviderError(
            kind="invalid_request", message=getattr(exc, "user_message", None) or INVALID_REQUEST_MESSAGE
        )
    if isinstance(exc, CircuitBreakerOpenError):
        return PaymentProviderError(kind="unavailable", message=GENERIC_MESSAGE)
    return PaymentProviderError(kind="unknown", message=GENERIC_MESSAGE)


async def _resolve_stripe_customer(stripe_client: Any, request: CheckoutRequest) -> str:
    email = str(request.customer_email).lower()
    existing = await call_stripe_client_method(stripe_client, "find_customer_by_email", email)
    if existing is not None:
        return _field(existing, "id")
    created = await call_stripe_client_method(
        stripe_client,
        "create_customer",
        email=email,
        name=request.customer_name,
        phone=request.customer_phone,
        metadata={"source": "booking_checkout"},
        idempotency_key=make_stripe_idempotency_key("customer_create", extra={"email": email}),
    )
    return _field(created, "id")


async def create_deposit_checkout(stripe_client: Any, request: CheckoutRequest) -> CheckoutResponse:
    """Open a hosted checkout session for the booking deposit.

    Nothing is written locally: the job row is created when the
    ``checkout.session.completed`` webhook carries the booking id back.
    """
    if stripe_client is None or not getattr(stripe_client, "configured", True):
        logger.error("stripe_not_configured")
        raise PaymentProviderError(kind="configuration", message=NOT_CONFIGURED_MESSAGE)

    details = request.booking_details
    booking_id = str(uuid.uuid4())
    total_cents, deposit_cents, remaining_cents = split_deposit(request.total_amount, settings.deposit_percent)
    metadata = _as_metadata(
        {
            "booking_id": booking_id,
            "customer_name": request.customer_name,
            "customer_email": str(request.customer_email).lower(),
            "customer_phone": request.customer_phone,
            "total_cents": total_cents,
            "deposit_cents": deposit_cents,
            "remaining_cents": remaining_cents,
            "sqft": details.sqft,
            "bedrooms": details.bedrooms,
            "bathrooms": details.bathrooms,
            "frequency": details.frequency.value,
            "address": details.address,
            "city": details.city,
            "scheduled_date": details.scheduled_date.isoformat() if details.scheduled_date else None,
            "time_slot": details.time_slot,
        }
    )
    base_url = (settings.public_base_url or "").rstrip("/")
    success_url = request.success_url or settings.stripe_success_url or f"{base_url}/booking-success?session_id={{CHECKOUT_SESSION_ID}}"
    cancel_url = request.cancel_url or settings.stripe_cancel_url or f"{base_url}/booking-cancelled"

    try:
        customer_id = await _resolve_stripe_customer(stripe_client, request)
        session = await call_stripe_client_method(
            stripe_client,
            "create_checkout_session",
            amount_cents=deposit_cents,
            currency=settings.stripe_currency,
            success_url=success_url,
            cancel_url=cancel_url,
            customer_id=customer_id,
            metadata=metadata,
            product_name=f"{settings.business_name} cleaning deposit",
            product_description=f"{int(settings.deposit_percent * 100)}% deposit, remaining balance charged on cleaning day",
            save_payment_method=True,
            idempotency_key=make_stripe_idempotency_key(
                "checkout_deposit",
                job_id=booking_id,
                amount_cents=deposit_cents,
                currency=settings.stripe_currency,
            ),
        )
    except Exception as exc:  # noqa: BLE001
        error = _map_stripe_error(exc)
        logger.warning(
            "checkout_session_failed",
            extra={"extra": {"booking_id": booking_id, "kind": error.kind, "reason": type(exc).__name__}},
        )
        raise error from exc

    logger.info(
        "checkout_session_created",
        extra={"extra": {"booking_id": booking_id, "deposit_cents": deposit_cents}},
    )
    return CheckoutResponse(
        session_id=_field(session, "id"),
        url=_field(session, "url"),
        customer_id=customer_id,
        booking_id=booking_id,
        deposit_amount=deposit_cents / 100,
        remaining_amount=remaining_cents / 100,
    )
