from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from booking_funnel.api.auth import require_service_role
from booking_funnel.domain.notifications.dispatcher import resolve_dispatcher
from booking_funnel.domain.notifications.schemas import NotificationRequest, NotificationResponse
from booking_funnel.domain.outbox.service import replay_outbox_event
from booking_funnel.infra.db import get_db_session

router = APIRouter(tags=["notifications"], dependencies=[Depends(require_service_role)])


@router.post("/v1/notifications/send", response_model=NotificationResponse, status_code=status.HTTP_200_OK)
async def send_notification(
    payload: NotificationRequest,
    http_request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> NotificationResponse:
    results = await resolve_dispatcher(http_request).dispatch(session, payload)
    await session.commit()
    return NotificationResponse(
        success=bool(results) and all(result.status == "sent" for result in results),
        results=results,
    )


@router.post("/v1/admin/outbox/{event_id}/replay", status_code=status.HTTP_200_OK)
async def replay_outbox(
    event_id: str,
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, str]:
    event = await replay_outbox_event(session, event_id)
    return {"event_id": event.event_id, "status": event.status}
