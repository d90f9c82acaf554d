from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from booking_funnel.api.auth import require_service_role
from booking_funnel.domain.notifications.dispatcher import resolve_dispatcher
from booking_funnel.domain.outbox.service import deliver_outbox_events
from booking_funnel.domain.subscriptions.schemas import SubscriptionCreateRequest, SubscriptionCreateResponse
from booking_funnel.domain.subscriptions.service import create_subscription
from booking_funnel.infra.db import get_db_session

router = APIRouter(tags=["subscriptions"])


@router.post(
    "/v1/subscriptions",
    response_model=SubscriptionCreateResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_service_role)],
)
async def create_subscription_endpoint(
    payload: SubscriptionCreateRequest,
    http_request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> SubscriptionCreateResponse:
    response, events = await create_subscription(session, payload)
    await deliver_outbox_events(session, [event.event_id for event in events], resolve_dispatcher(http_request))
    return response
