import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from booking_funnel.domain.activity.service import log_activity
from booking_funnel.domain.errors import DomainError, NotFoundError
from booking_funnel.domain.jobs import statuses
from booking_funnel.domain.jobs.db_models import Job
from booking_funnel.domain.notifications import templates
from booking_funnel.domain.notifications.schemas import NotificationRequest
from booking_funnel.domain.outbox.db_models import OutboxEvent
from booking_funnel.domain.outbox.service import enqueue_notification
from booking_funnel.settings import settings

logger = logging.getLogger(__name__)


async def get_job(session: AsyncSession, job_id: str, *, for_update: bool = False) -> Job:
    stmt = (
        select(Job)
        .options(selectinload(Job.customer), selectinload(Job.cleaner))
        .where(Job.job_id == job_id)
    )
    if for_update:
        stmt = stmt.with_for_update()
    job = await session.scalar(stmt)
    if job is None:
        raise NotFoundError(detail="Job not found")
    return job


def transition_job_status(job: Job, target: str) -> bool:
    """Move ``job`` to ``target``; returns False when it was already there."""
    if target not in statuses.STATUSES:
        raise DomainError(detail=f"Unknown job status: {target}")
    if job.status == target:
        return False
    if not statuses.can_transition(job.status, target):
        raise DomainError(detail=f"Cannot move job from {job.status} to {target}")
    logger.info(
        "job_status_changed",
        extra={"extra": {"job_id": job.job_id, "from": job.status, "to": target}},
    )
    job.status = target
    return True


def feedback_url(job_id: str) -> str:
    base = (settings.public_base_url or "").rstrip("/")
    return f"{base}/feedback?job={job_id}"


async def complete_job(session: AsyncSession, job_id: str, *, actor: str = "system") -> tuple[Job, list[OutboxEvent]]:
    job = await get_job(session, job_id, for_update=True)
    if job.status == statuses.COMPLETED:
        raise DomainError(detail="Job is already completed")
    transition_job_status(job, statuses.COMPLETED)
    job.completed_at = datetime.now(tz=timezone.utc)
    log_activity(
        session,
        entity_type="job",
        entity_id=job.job_id,
        action="completed",
        details={"cleaner_id": job.cleaner_id},
        actor=actor,
    )
    customer = job.customer
    message = templates.job_complete(
        customer_name=customer.name,
        cleaner_name=job.cleaner.name if job.cleaner else None,
        scheduled_date=job.scheduled_date,
        feedback_url=feedback_url(job.job_id),
    )
    events = await enqueue_notification(
        session,
        NotificationRequest(
            channel="both",
            recipient_type="customer",
            recipient_id=customer.customer_id,
            phone=customer.phone,
            email=customer.email,
            template=templates.JOB_COMPLETE,
            sms_body=message.sms_body,
            email_subject=message.email_subject,
            email_html=message.email_html,
            related_entity_type="job",
            related_entity_id=job.job_id,
        ),
        dedupe_prefix=f"{templates.JOB_COMPLETE}:{job.job_id}",
    )
    await session.commit()
    logger.info("job_completed", extra={"extra": {"job_id": job.job_id}})
    return job, events
