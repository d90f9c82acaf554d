from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from booking_funnel.domain.notifications.dispatcher import NotificationDispatcher, resolve_dispatcher
from booking_funnel.domain.pricing.config import PricingConfig
from booking_funnel.domain.pricing.service import load_pricing_config
from booking_funnel.infra.db import get_db_session
from booking_funnel.infra.stripe_client import StripeClient, resolve_client


async def get_pricing_config(session: AsyncSession = Depends(get_db_session)) -> PricingConfig:
    return await load_pricing_config(session)


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return resolve_dispatcher(request)


def get_stripe_client(request: Request) -> StripeClient:
    return resolve_client(request.app.state)
