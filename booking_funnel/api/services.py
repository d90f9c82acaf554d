from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from booking_funnel.infra.communication import (
    NoopCommunicationAdapter,
    TwilioCommunicationAdapter,
    resolve_communication_adapter,
)
from booking_funnel.infra.email import EmailAdapter, NoopEmailAdapter, resolve_email_adapter
from booking_funnel.infra.metrics import Metrics, configure_metrics
from booking_funnel.infra.stripe_client import StripeClient


@dataclass
class AppServices:
    """Typed container for runtime services stored on `app.state.services`."""

    email_adapter: EmailAdapter | NoopEmailAdapter
    communication_adapter: TwilioCommunicationAdapter | NoopCommunicationAdapter
    stripe_client: StripeClient
    metrics: Metrics


def build_app_services(app_settings, *, metrics: Metrics | None = None) -> AppServices:
    metrics_client = metrics or configure_metrics(app_settings.metrics_enabled)
    return AppServices(
        email_adapter=resolve_email_adapter(app_settings),
        communication_adapter=resolve_communication_adapter(app_settings),
        stripe_client=StripeClient(
            secret_key=app_settings.stripe_secret_key,
            webhook_secret=app_settings.stripe_webhook_secret,
        ),
        metrics=metrics_client,
    )


def resolve_services(container_like: Any) -> AppServices | None:
    if isinstance(container_like, AppServices):
        return container_like
    if container_like is None:
        return None
    state = getattr(container_like, "state", container_like)
    return getattr(state, "services", None)
