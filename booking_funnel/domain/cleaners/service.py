import logging
from datetime import date, datetime, timezone

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from booking_funnel.domain.activity.service import log_activity
from booking_funnel.domain.cleaners.db_models import Cleaner
from booking_funnel.domain.cleaners.instructions import build_cleaning_instructions
from booking_funnel.domain.errors import DomainError
from booking_funnel.domain.jobs import statuses
from booking_funnel.domain.jobs.service import get_job
from booking_funnel.domain.notifications import templates
from booking_funnel.domain.notifications.dispatcher import NotificationDispatcher
from booking_funnel.domain.notifications.schemas import NotificationRequest
from booking_funnel.infra.metrics import metrics

logger = logging.getLogger(__name__)

NO_CLEANERS_MESSAGE = "No cleaners available for this date"


class AssignmentResult(BaseModel):
    success: bool
    job_id: str
    cleaner_id: str | None = None
    cleaner_name: str | None = None
    cleaner_notified: bool = False
    requires_manual_assignment: bool = False
    error: str | None = None


def weekday_name(value: date) -> str:
    return value.strftime("%A").lower()


def _serves(cleaner: Cleaner, weekday: str, city: str | None) -> bool:
    days = {day.lower() for day in cleaner.available_days or []}
    if weekday not in days:
        return False
    areas = {area.strip().lower() for area in cleaner.service_areas or []}
    if not areas:
        return True
    return bool(city) and city.strip().lower() in areas


async def find_candidates(session: AsyncSession, scheduled_date: date, city: str | None) -> list[Cleaner]:
    """Active cleaners for the day and area, least recently assigned first."""
    result = await session.execute(
        select(Cleaner)
        .where(Cleaner.is_active.is_(True))
        .order_by(
            Cleaner.last_assigned_at.asc().nulls_first(),
            Cleaner.total_assignments.asc(),
            Cleaner.cleaner_id.asc(),
        )
        .execution_options(populate_existing=True)
    )
    weekday = weekday_name(scheduled_date)
    return [cleaner for cleaner in result.scalars().all() if _serves(cleaner, weekday, city)]


async def claim_cleaner(session: AsyncSession, cleaner: Cleaner, now: datetime) -> bool:
    """Compare-and-swap on ``last_assigned_at``; False means another assignment got there first."""
    observed = cleaner.last_assigned_at
    stmt = update(Cleaner).where(Cleaner.cleaner_id == cleaner.cleaner_id)
    if observed is None:
        stmt = stmt.where(Cleaner.last_assigned_at.is_(None))
    else:
        stmt = stmt.where(Cleaner.last_assigned_at == observed)
    stmt = stmt.values(
        last_assigned_at=now,
        total_assignments=Cleaner.total_assignments + 1,
    ).execution_options(synchronize_session=False)
    result = await session.execute(stmt)
    return result.rowcount == 1


async def assign_cleaner(
    session: AsyncSession, job_id: str, dispatcher: NotificationDispatcher
) -> AssignmentResult:
    job = await get_job(session, job_id)
    if job.scheduled_date is None:
        raise DomainError(detail="Job has no scheduled date")
    if job.status in statuses.TERMINAL_STATUSES:
        raise DomainError(detail=f"Cannot assign a cleaner to a {job.status} job")

    candidates = await find_candidates(session, job.scheduled_date, job.city)
    now = datetime.now(tz=timezone.utc)
    chosen: Cleaner | None = None
    for candidate in candidates:
        if await claim_cleaner(session, candidate, now):
            chosen = candidate
            break
        logger.info("cleaner_claim_conflict", extra={"extra": {"cleaner_id": candidate.cleaner_id}})

    if chosen is None:
        log_activity(
            session,
            entity_type="job",
            entity_id=job.job_id,
            action="assignment_failed",
            details={"reason": NO_CLEANERS_MESSAGE, "scheduled_date": job.scheduled_date.isoformat()},
        )
        await session.commit()
        metrics.record_assignment("manual_required")
        logger.warning("cleaner_assignment_unavailable", extra={"extra": {"job_id": job.job_id}})
        return AssignmentResult(
            success=False,
            job_id=job.job_id,
            requires_manual_assignment=True,
            error=NO_CLEANERS_MESSAGE,
        )

    customer = job.customer
    job.cleaner_id = chosen.cleaner_id
    job.cleaning_instructions = build_cleaning_instructions(
        job, customer_name=customer.name, customer_phone=customer.phone
    )
    log_activity(
        session,
        entity_type="job",
        entity_id=job.job_id,
        action="cleaner_assigned",
        details={"cleaner_id": chosen.cleaner_id, "cleaner_name": chosen.name},
    )
    await session.commit()
    metrics.record_assignment("assigned")
    logger.info(
        "cleaner_assigned",
        extra={"extra": {"job_id": job.job_id, "cleaner_id": chosen.cleaner_id}},
    )

    result = AssignmentResult(
        success=True,
        job_id=job.job_id,
        cleaner_id=chosen.cleaner_id,
        cleaner_name=chosen.name,
    )
    result.cleaner_notified = await _notify_cleaner(session, dispatcher, job, chosen)
    return result


async def _notify_cleaner(session: AsyncSession, dispatcher: NotificationDispatcher, job, cleaner: Cleaner) -> bool:
    if not cleaner.email:
        logger.info("cleaner_notification_skipped", extra={"extra": {"cleaner_id": cleaner.cleaner_id}})
        return False
    job_id = job.job_id
    message = templates.cleaner_assignment(
        cleaner_name=cleaner.name,
        customer_name=job.customer.name,
        scheduled_date=job.scheduled_date,
        time_slot=job.time_slot,
        address=job.address,
        instructions=job.cleaning_instructions or "",
    )
    try:
        results = await dispatcher.dispatch(
            session,
            NotificationRequest(
                channel="email",
                recipient_type="cleaner",
                recipient_id=cleaner.cleaner_id,
                email=cleaner.email,
                template=templates.CLEANER_ASSIGNMENT,
                email_subject=message.email_subject,
                email_html=message.email_html,
                related_entity_type="job",
                related_entity_id=job.job_id,
                check_opt_out=False,
            ),
        )
        sent = any(result.status == "sent" for result in results)
        if sent:
            job.cleaner_notified_at = datetime.now(tz=timezone.utc)
        await session.commit()
    except Exception:  # noqa: BLE001
        await session.rollback()
        logger.exception("cleaner_notification_failed", extra={"extra": {"job_id": job_id}})
        return False
    return sent
