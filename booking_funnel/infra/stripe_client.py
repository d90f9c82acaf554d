from __future__ import annotations

import inspect
import json
from typing import Any, Callable

import anyio

from booking_funnel.infra.stripe_resilience import stripe_circuit
from booking_funnel.settings import settings


MUTATING_METHOD_PREFIXES: tuple[str, ...] = (
    "create_",
    "cancel_",
    "refund_",
    "update_",
)

READ_ONLY_METHOD_PREFIXES: tuple[str, ...] = (
    "retrieve_",
    "list_",
    "find_",
    "verify_",
    "parse_",
)


def is_mutating_method(method_name: str) -> bool:
    if method_name.startswith(READ_ONLY_METHOD_PREFIXES):
        return False
    return method_name.startswith(MUTATING_METHOD_PREFIXES)


def _first_item(listing: Any) -> Any | None:
    data = listing.get("data") if isinstance(listing, dict) else getattr(listing, "data", None)
    if not data:
        return None
    return data[0]


def _field(source: Any, key: str) -> Any:
    if isinstance(source, dict):
        return source.get(key)
    return getattr(source, key, None)


class StripeClient:
    def __init__(
        self,
        *,
        secret_key: str | None,
        webhook_secret: str | None,
        stripe_sdk: Any | None = None,
    ) -> None:
        """Wrap the synchronous Stripe SDK for use from async handlers.

        ``None`` credentials fall back to global settings. Operations raise
        ``ValueError`` when the key they need is still missing.
        """
        if stripe_sdk is None:
            import stripe as stripe_sdk  # type: ignore

        self.stripe = stripe_sdk
        self.secret_key = secret_key or settings.stripe_secret_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    async def _call(self, fn: Callable[..., Any], /, *args, **kwargs) -> Any:
        def _sync_call() -> Any:
            return fn(*args, **kwargs)

        return await stripe_circuit.call(lambda: anyio.to_thread.run_sync(_sync_call))

    def _require_secret(self) -> None:
        if not self.secret_key:
            raise ValueError("Stripe secret key not configured")
        self.stripe.api_key = self.secret_key

    async def find_customer_by_email(self, email: str) -> Any | None:
        self._require_secret()
        listing = await self._call(self.stripe.Customer.list, email=email, limit=1)
        return _first_item(listing)

    async def create_customer(
        self,
        *,
        email: str,
        name: str | None = None,
        phone: str | None = None,
        metadata: dict[str, str] | None = None,
        idempotency_key: str | None = None,
    ) -> Any:
        self._require_secret()
        payload: dict[str, Any] = {"email": email, "metadata": metadata or {}}
        if name:
            payload["name"] = name
        if phone:
            payload["phone"] = phone
        extra: dict[str, Any] = {}
        if idempotency_key:
            extra["idempotency_key"] = idempotency_key
        return await self._call(self.stripe.Customer.create, **payload, **extra)

    async def create_checkout_session(
        self,
        *,
        amount_cents: int,
        currency: str,
        success_url: str,
        cancel_url: str,
        customer_id: str | None = None,
        customer_email: str | None = None,
        metadata: dict[str, str] | None = None,
        product_name: str = "Cleaning deposit",
        product_description: str | None = None,
        save_payment_method: bool = True,
        idempotency_key: str | None = None,
    ) -> Any:
        self._require_secret()
        product_data: dict[str, Any] = {"name": product_name}
        if product_description:
            product_data["description"] = product_description
        payload: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "line_items": [
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": product_data,
                        "unit_amount": amount_cents,
                    },
                    "quantity": 1,
                }
            ],
            "metadata": metadata or {},
        }
        payment_intent_data: dict[str, Any] = {"metadata": metadata or {}}
        if save_payment_method:
            payment_intent_data["setup_future_usage"] = "off_session"
        payload["payment_intent_data"] = payment_intent_data
        if customer_id:
            payload["customer"] = customer_id
        elif customer_email:
            payload["customer_email"] = customer_email
        extra: dict[str, Any] = {}
        if idempotency_key:
            extra["idempotency_key"] = idempotency_key
        return await self._call(self.stripe.checkout.Session.create, **payload, **extra)

    async def find_default_payment_method(self, customer_id: str) -> str | None:
        self._require_secret()
        customer = await self._call(self.stripe.Customer.retrieve, customer_id)
        settings_block = _field(customer, "invoice_settings")
        default_method = _field(settings_block, "default_payment_method") if settings_block else None
        if default_method:
            return default_method if isinstance(default_method, str) else _field(default_method, "id")
        listing = await self._call(
            self.stripe.PaymentMethod.list, customer=customer_id, type="card", limit=1
        )
        method = _first_item(listing)
        return _field(method, "id") if method is not None else None

    async def create_payment_intent(
        self,
        *,
        amount_cents: int,
        currency: str,
        customer_id: str,
        payment_method_id: str,
        metadata: dict[str, str] | None = None,
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> Any:
        self._require_secret()
        payload: dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency,
            "customer": customer_id,
            "payment_method": payment_method_id,
            "off_session": True,
            "confirm": True,
            "metadata": metadata or {},
        }
        if description:
            payload["description"] = description
        extra: dict[str, Any] = {}
        if idempotency_key:
            extra["idempotency_key"] = idempotency_key
        return await self._call(self.stripe.PaymentIntent.create, **payload, **extra)

    async def verify_webhook(self, payload: bytes, signature: str | None) -> Any:
        if not self.webhook_secret:
            raise ValueError("Stripe webhook secret not configured")
        if not signature:
            raise ValueError("Missing Stripe signature header")
        return await self._call(
            self.stripe.Webhook.construct_event,
            payload=payload,
            sig_header=signature,
            secret=self.webhook_secret,
        )

    def parse_unverified(self, payload: bytes) -> dict[str, Any]:
        event = json.loads(payload or b"{}")
        if not isinstance(event, dict):
            raise ValueError("Webhook payload must be a JSON object")
        return event


def resolve_client(app_state: Any) -> StripeClient:
    """Resolve the Stripe client for the current app.

    Lookup order: ``state.stripe_client``, then ``state.services.stripe_client``,
    then a fresh client built from ``state.app_settings`` or the global settings.
    """
    state = getattr(app_state, "state", app_state)
    client = getattr(state, "stripe_client", None)
    if client is not None:
        return client
    services = getattr(state, "services", None)
    if services is not None:
        client = getattr(services, "stripe_client", None)
        if client is not None:
            return client
    app_settings = getattr(state, "app_settings", None)
    client = StripeClient(
        secret_key=getattr(app_settings, "stripe_secret_key", None) or settings.stripe_secret_key,
        webhook_secret=getattr(app_settings, "stripe_webhook_secret", None) or settings.stripe_webhook_secret,
    )
    state.stripe_client = client
    return client


async def call_stripe_client_method(client: Any, method_name: str, /, *args, **kwargs) -> Any:
    method = getattr(client, method_name, None)
    if method is None:
        raise AttributeError(f"Stripe client missing method {method_name}")

    if is_mutating_method(method_name) and not kwargs.get("idempotency_key"):
        raise ValueError(
            f"Stripe mutation '{method_name}' requires idempotency_key to be provided"
        )

    result = method(*args, **kwargs)
    if inspect.isawaitable(result):
        return await result
    return result
