
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from booking_funnel.api.auth import require_service_role
from booking_funnel.domain.cleaners.service import AssignmentResult, assign_cleaner
from booking_funnel.domain.jobs.schemas import JobCompletionResponse
from booking_funnel.domain.jobs.service import complete_job, feedback_url
from booking_funnel.domain.notifications.dispatcher import resolve_dispatcher
from booking_funnel.domain.outbox.service import deliver_outbox_events
from booking_funnel.infra.db import get_db_session

router = APIRouter(tags=["jobs"], dependencies=[Depends(require_service_role)])


@router.post(
    "/v1/jobs/{job_id}/assign-cleaner",
    response_model=AssignmentResult,
    status_code=status.HTTP_200_OK,
)
async def assign_cleaner_endpoint(
    job_id: str,
    http_request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> AssignmentResult:
    return await assign_cleaner(session, job_id, resolve_dispatcher(http_request))


@router.post(
    "/v1/jobs/{job_id}/complete",
    response_model=JobCompletionResponse,
    status_code=status.HTTP_200_OK,
)
async def complete_job_endpoint(
    job_id: str,
    http_request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> JobCompletionResponse:
    job, events = await complete_job(session, job_id, actor="service_role")
    response = JobCompletionResponse(
        job_id=job.job_id,
        status=job.status,
        completed_at=job.completed_at,
        feedback_url=feedback_url(job.job_id),
        notifications_queued=len(events),
    )
    await deliver_outbox_events(
        session, [event.event_id for event in events], resolve_dispatcher(http_request)
    )
    return response
