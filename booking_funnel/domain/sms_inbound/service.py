import logging
import re
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from booking_funnel.domain.activity.service import log_activity
from booking_funnel.domain.customers.db_models import Customer
from booking_funnel.domain.customers.service import find_customer_by_phone
from booking_funnel.domain.feedback.service import submit_feedback
from booking_funnel.domain.jobs import statuses
from booking_funnel.domain.jobs.db_models import Job
from booking_funnel.domain.notifications import templates
from booking_funnel.domain.notifications.dispatcher import log_inbound_sms
from booking_funnel.domain.outbox.db_models import OutboxEvent

logger = logging.getLogger(__name__)

STOP_WORDS = {"stop", "unsubscribe", "cancel", "quit", "end"}
START_WORDS = {"start", "subscribe", "yes"}
RATING_RE = re.compile(r"^[1-5]$")


@dataclass
class InboundResult:
    reply: str
    action: str
    events: list[OutboxEvent] = field(default_factory=list)


async def _latest_unrated_job(session: AsyncSession, customer: Customer) -> Job | None:
    return await session.scalar(
        select(Job)
        .where(
            Job.customer_id == customer.customer_id,
            Job.status == statuses.COMPLETED,
            Job.customer_rating.is_(None),
        )
        .order_by(Job.scheduled_date.desc(), Job.completed_at.desc())
        .limit(1)
    )


async def handle_inbound_sms(session: AsyncSession, from_number: str, body: str | None) -> InboundResult:
    """Interpret a customer's text and return the reply to send back."""
    text = (body or "").strip().lower()
    customer = await find_customer_by_phone(session, from_number)
    if customer is not None:
        log_inbound_sms(session, customer_id=customer.customer_id, from_number=from_number, body=body or "")

    if text in STOP_WORDS:
        if customer is not None:
            customer.sms_opted_out = True
            log_activity(
                session,
                entity_type="customer",
                entity_id=customer.customer_id,
                action="sms_unsubscribed",
                details={"keyword": text},
                actor="customer",
            )
        result = InboundResult(reply=templates.sms_unsubscribed_reply(), action="unsubscribed")
    elif text in START_WORDS:
        if customer is not None:
            customer.sms_opted_out = False
            log_activity(
                session,
                entity_type="customer",
                entity_id=customer.customer_id,
                action="sms_resubscribed",
                details={"keyword": text},
                actor="customer",
            )
        result = InboundResult(reply=templates.sms_resubscribed_reply(), action="resubscribed")
    elif RATING_RE.match(text):
        result = await _handle_rating(session, customer, int(text))
    else:
        log_activity(
            session,
            entity_type="customer" if customer is not None else "system",
            entity_id=customer.customer_id if customer is not None else "sms_inbound",
            action="sms_received",
            details={"from": from_number, "body": body or "", "customer_id": getattr(customer, "customer_id", None)},
            actor="customer",
        )
        reply = templates.sms_generic_reply() if customer is not None else templates.sms_unknown_sender_reply()
        result = InboundResult(reply=reply, action="received")

    await session.commit()
    logger.info(
        "sms_inbound_handled",
        extra={"extra": {"action": result.action, "known_customer": customer is not None}},
    )
    return result


async def _handle_rating(session: AsyncSession, customer: Customer | None, rating: int) -> InboundResult:
    if customer is None:
        return InboundResult(reply=templates.sms_unknown_sender_reply(), action="rating_unknown_sender")
    job = await _latest_unrated_job(session, customer)
    if job is None:
        return InboundResult(reply=templates.sms_rating_without_job_reply(), action="rating_without_job")
    _, events = await submit_feedback(session, job.job_id, rating, None)
    return InboundResult(reply=templates.sms_rating_reply(rating), action="rating", events=events)
