import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from booking_funnel.domain.activity.service import log_activity
from booking_funnel.domain.customers.db_models import CustomerNote
from booking_funnel.domain.errors import DomainError
from booking_funnel.domain.feedback.schemas import FeedbackResponse
from booking_funnel.domain.jobs import statuses
from booking_funnel.domain.jobs.service import get_job
from booking_funnel.domain.notifications import templates
from booking_funnel.domain.notifications.schemas import NotificationRequest
from booking_funnel.domain.outbox.db_models import OutboxEvent
from booking_funnel.domain.outbox.service import enqueue_notification
from booking_funnel.settings import settings

logger = logging.getLogger(__name__)

HIGH_RATING = 4
LOW_RATING = 3


async def submit_feedback(
    session: AsyncSession,
    job_id: str,
    rating: int,
    feedback: str | None = None,
    *,
    actor: str = "customer",
) -> tuple[FeedbackResponse, list[OutboxEvent]]:
    if not 1 <= rating <= 5:
        raise DomainError(detail="Rating must be between 1 and 5")
    job = await get_job(session, job_id, for_update=True)
    if job.status != statuses.COMPLETED:
        raise DomainError(detail="Feedback can only be left for completed jobs")
    if job.customer_rating is not None:
        raise DomainError(detail="Feedback already submitted for this job")

    customer = job.customer
    job.customer_rating = rating
    job.customer_feedback = feedback
    job.feedback_submitted_at = datetime.now(tz=timezone.utc)
    log_activity(
        session,
        entity_type="job",
        entity_id=job.job_id,
        action="feedback_submitted",
        details={"rating": rating, "has_feedback": bool(feedback)},
        actor=actor,
    )

    events: list[OutboxEvent] = []
    review_requested = False
    escalated = False
    if rating >= HIGH_RATING and not customer.google_review_requested:
        message = templates.google_review_request(customer_name=customer.name)
        events += await enqueue_notification(
            session,
            _customer_sms(customer, job.job_id, templates.GOOGLE_REVIEW_REQUEST, message.sms_body),
            dedupe_prefix=f"{templates.GOOGLE_REVIEW_REQUEST}:{customer.customer_id}",
        )
        customer.google_review_requested = True
        customer.google_review_sent_at = datetime.now(tz=timezone.utc)
        review_requested = True
    elif rating <= LOW_RATING:
        message = templates.low_rating_response(customer_name=customer.name)
        events += await enqueue_notification(
            session,
            _customer_sms(customer, job.job_id, templates.LOW_RATING_RESPONSE, message.sms_body),
            dedupe_prefix=f"{templates.LOW_RATING_RESPONSE}:{job.job_id}",
        )
        session.add(
            CustomerNote(
                customer_id=customer.customer_id,
                note_type="complaint",
                content=f"Low rating ({rating}/5) for job {job.job_id}: {feedback or 'No written feedback.'}",
            )
        )
        log_activity(
            session,
            entity_type="job",
            entity_id=job.job_id,
            action="low_rating_received",
            details={"rating": rating, "feedback": feedback},
            actor=actor,
        )
        if settings.manager_email:
            escalation = templates.complaint_escalation(
                customer_name=customer.name,
                customer_phone=customer.phone,
                job_id=job.job_id,
                rating=rating,
                feedback=feedback,
            )
            events += await enqueue_notification(
                session,
                NotificationRequest(
                    channel="email",
                    recipient_type="manager",
                    email=settings.manager_email,
                    template=templates.COMPLAINT_ESCALATION,
                    email_subject=escalation.email_subject,
                    email_html=escalation.email_html,
                    related_entity_type="job",
                    related_entity_id=job.job_id,
                    check_opt_out=False,
                ),
                dedupe_prefix=f"{templates.COMPLAINT_ESCALATION}:{job.job_id}",
            )
            escalated = True
        logger.warning("low_rating_received", extra={"extra": {"job_id": job.job_id, "rating": rating}})

    await session.commit()
    logger.info("feedback_submitted", extra={"extra": {"job_id": job.job_id, "rating": rating}})
    return (
        FeedbackResponse(
            success=True,
            job_id=job.job_id,
            rating=rating,
            review_requested=review_requested,
            escalated=escalated,
        ),
        events,
    )


def _customer_sms(customer, job_id: str, template: str, body: str) -> NotificationRequest:
    return NotificationRequest(
        channel="sms",
        recipient_type="customer",
        recipient_id=customer.customer_id,
        phone=customer.phone,
        template=template,
        sms_body=body,
        related_entity_type="job",
        related_entity_id=job_id,
    )
