from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from booking_funnel.domain.feedback.schemas import FeedbackRequest, FeedbackResponse
from booking_funnel.domain.feedback.service import submit_feedback
from booking_funnel.domain.notifications.dispatcher import resolve_dispatcher
from booking_funnel.domain.outbox.service import deliver_outbox_events
from booking_funnel.infra.db import get_db_session

router = APIRouter(tags=["feedback"])


@router.post("/v1/feedback", response_model=FeedbackResponse, status_code=status.HTTP_200_OK)
async def create_feedback(
    payload: FeedbackRequest,
    http_request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> FeedbackResponse:
    response, events = await submit_feedback(session, payload.job_id, payload.rating, payload.feedback)
    await deliver_outbox_events(session, [event.event_id for event in events], resolve_dispatcher(http_request))
    return response
