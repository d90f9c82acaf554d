import logging
from collections import defaultdict
from datetime import date, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from booking_funnel.domain.cleaners.db_models import Cleaner
from booking_funnel.domain.cleaners.service import weekday_name
from booking_funnel.domain.jobs import statuses
from booking_funnel.domain.jobs.db_models import Job
from booking_funnel.domain.jobs.statuses import time_slot_label
from booking_funnel.domain.notifications import templates
from booking_funnel.domain.notifications.dispatcher import NotificationDispatcher
from booking_funnel.domain.notifications.schemas import NotificationRequest
from booking_funnel.domain.outbox.service import deliver_outbox_events, enqueue_notification
from booking_funnel.infra.logging import clear_log_context, update_log_context
from booking_funnel.settings import settings

logger = logging.getLogger(__name__)

DAY_BEFORE = "day_before"
MORNING_OF = "morning_of"
CLEANER_REMINDER_MODES = (DAY_BEFORE, MORNING_OF)


async def _enqueue_and_deliver(
    session: AsyncSession, dispatcher: NotificationDispatcher, request: NotificationRequest, dedupe_prefix: str
) -> None:
    events = await enqueue_notification(session, request, dedupe_prefix=dedupe_prefix)
    await session.commit()
    await deliver_outbox_events(session, [event.event_id for event in events], dispatcher)


async def send_day_before_reminders(
    session: AsyncSession, dispatcher: NotificationDispatcher, *, today: date | None = None
) -> dict[str, int]:
    tomorrow = (today or date.today()) + timedelta(days=1)
    result = await session.execute(
        select(Job)
        .options(selectinload(Job.customer))
        .where(Job.scheduled_date == tomorrow, Job.status.in_(statuses.BOOKED_STATUSES))
        .order_by(Job.time_slot, Job.job_id)
    )
    pending: list[tuple[str, NotificationRequest]] = []
    for job in result.scalars().all():
        customer = job.customer
        message = templates.day_before_reminder(
            customer_name=customer.name, scheduled_date=job.scheduled_date, time_slot=job.time_slot
        )
        pending.append(
            (
                job.job_id,
                NotificationRequest(
                    channel="sms",
                    recipient_type="customer",
                    recipient_id=customer.customer_id,
                    phone=customer.phone,
                    template=templates.DAY_BEFORE_REMINDER,
                    sms_body=message.sms_body,
                    related_entity_type="job",
                    related_entity_id=job.job_id,
                ),
            )
        )

    queued = 0
    failed = 0
    for job_id, request in pending:
        update_log_context(job_id=job_id)
        try:
            await _enqueue_and_deliver(session, dispatcher, request, f"reminder:{job_id}")
            queued += 1
        except Exception:  # noqa: BLE001
            await session.rollback()
            failed += 1
            logger.exception("day_before_reminder_failed", extra={"extra": {"job_id": job_id}})
        finally:
            clear_log_context()
    logger.info(
        "day_before_reminders_done",
        extra={"extra": {"jobs": len(pending), "queued": queued, "failed": failed}},
    )
    return {"jobs": len(pending), "queued": queued, "failed": failed}


def _slot_rank(job: Job) -> int:
    return 0 if job.time_slot == statuses.MORNING else 1


def _job_row(job: Job) -> dict[str, str]:
    return {
        "date": templates.format_date(job.scheduled_date),
        "time": time_slot_label(job.time_slot),
        "customer": job.customer.name,
        "phone": job.customer.phone or "",
        "address": ", ".join(part for part in (job.address, job.city) if part) or "TBD",
    }


def next_week_bounds(today: date) -> tuple[date, date]:
    monday = today + timedelta(days=7 - today.weekday())
    return monday, monday + timedelta(days=6)


async def send_weekly_schedules(
    session: AsyncSession, dispatcher: NotificationDispatcher, *, today: date | None = None
) -> dict[str, int]:
    """Email each active cleaner next week's jobs, once a week on ``weekly_schedule_weekday``."""
    today = today or date.today()
    if weekday_name(today) != settings.weekly_schedule_weekday:
        logger.info("weekly_schedules_not_due", extra={"extra": {"weekday": weekday_name(today)}})
        return {"sent": 0, "skipped": 0, "failed": 0}
    week_start, week_end = next_week_bounds(today)
    cleaners = (
        await session.execute(
            select(Cleaner).where(Cleaner.is_active.is_(True), Cleaner.email.is_not(None)).order_by(Cleaner.name)
        )
    ).scalars().all()
    jobs = (
        await session.execute(
            select(Job)
            .options(selectinload(Job.customer))
            .where(
                Job.cleaner_id.is_not(None),
                Job.scheduled_date >= week_start,
                Job.scheduled_date <= week_end,
                Job.status.in_(statuses.BOOKED_STATUSES),
            )
            .order_by(Job.scheduled_date, Job.job_id)
        )
    ).scalars().all()
    rows_by_cleaner: dict[str, list[dict[str, str]]] = defaultdict(list)
    for job in sorted(jobs, key=lambda job: (job.scheduled_date, _slot_rank(job))):
        rows_by_cleaner[job.cleaner_id].append(_job_row(job))

    pending: list[tuple[str, NotificationRequest]] = []
    skipped = 0
    for cleaner in cleaners:
        rows = rows_by_cleaner.get(cleaner.cleaner_id)
        if not rows:
            skipped += 1
            continue
        message = templates.weekly_schedule(
            cleaner_name=cleaner.name, week_start=week_start, week_end=week_end, jobs=rows
        )
        pending.append(
            (
                cleaner.cleaner_id,
                NotificationRequest(
                    channel="email",
                    recipient_type="cleaner",
                    recipient_id=cleaner.cleaner_id,
                    email=cleaner.email,
                    template=templates.WEEKLY_SCHEDULE,
                    email_subject=message.email_subject,
                    email_html=message.email_html,
                    related_entity_type="cleaner",
                    related_entity_id=cleaner.cleaner_id,
                    check_opt_out=False,
                ),
            )
        )

    sent = 0
    failed = 0
    for cleaner_id, request in pending:
        try:
            await _enqueue_and_deliver(
                session,
                dispatcher,
                request,
                f"{templates.WEEKLY_SCHEDULE}:{cleaner_id}:{week_start.isoformat()}",
            )
            sent += 1
        except Exception:  # noqa: BLE001
            await session.rollback()
            failed += 1
            logger.exception("weekly_schedule_failed", extra={"extra": {"cleaner_id": cleaner_id}})
    logger.info(
        "weekly_schedules_done",
        extra={"extra": {"sent": sent, "skipped": skipped, "failed": failed}},
    )
    return {"sent": sent, "skipped": skipped, "failed": failed}


async def send_cleaner_reminders(
    session: AsyncSession, dispatcher: NotificationDispatcher, *, mode: str, today: date | None = None
) -> dict[str, int]:
    """Remind each assigned cleaner of their stops.

    ``day_before`` texts and emails tomorrow's list; ``morning_of`` sends a
    short text for today. One message per cleaner per day and mode.
    """
    if mode not in CLEANER_REMINDER_MODES:
        raise ValueError(f"unknown_cleaner_reminder_mode:{mode}")
    today = today or date.today()
    target = today + timedelta(days=1) if mode == DAY_BEFORE else today
    jobs = (
        await session.execute(
            select(Job)
            .options(selectinload(Job.customer), selectinload(Job.cleaner))
            .where(
                Job.scheduled_date == target,
                Job.cleaner_id.is_not(None),
                Job.status.in_(statuses.BOOKED_STATUSES),
            )
            .order_by(Job.job_id)
        )
    ).scalars().all()
    jobs_by_cleaner: dict[str, list[Job]] = defaultdict(list)
    for job in sorted(jobs, key=_slot_rank):
        jobs_by_cleaner[job.cleaner_id].append(job)

    pending: list[tuple[str, NotificationRequest]] = []
    skipped = 0
    for cleaner_id, cleaner_jobs in jobs_by_cleaner.items():
        cleaner = cleaner_jobs[0].cleaner
        rows = [_job_row(job) for job in cleaner_jobs]
        if mode == DAY_BEFORE:
            channels = [channel for channel, contact in (("sms", cleaner.phone), ("email", cleaner.email)) if contact]
            message = templates.cleaner_day_before(cleaner_name=cleaner.name, scheduled_date=target, jobs=rows)
            template = templates.CLEANER_DAY_BEFORE
        else:
            channels = ["sms"] if cleaner.phone else []
            message = templates.cleaner_morning_of(cleaner_name=cleaner.name, jobs=rows)
            template = templates.CLEANER_MORNING_OF
        if not channels:
            skipped += 1
            logger.info("cleaner_reminder_skipped", extra={"extra": {"cleaner_id": cleaner_id, "mode": mode}})
            continue
        pending.append(
            (
                cleaner_id,
                NotificationRequest(
                    channel="both" if len(channels) == 2 else channels[0],
                    recipient_type="cleaner",
                    recipient_id=cleaner_id,
                    phone=cleaner.phone if "sms" in channels else None,
                    email=cleaner.email if "email" in channels else None,
                    template=template,
                    sms_body=message.sms_body if "sms" in channels else None,
                    email_subject=message.email_subject if "email" in channels else None,
                    email_html=message.email_html if "email" in channels else None,
                    related_entity_type="cleaner",
                    related_entity_id=cleaner_id,
                    check_opt_out=False,
                ),
            )
        )

    queued = 0
    failed = 0
    for cleaner_id, request in pending:
        update_log_context(cleaner_id=cleaner_id)
        try:
            await _enqueue_and_deliver(
                session,
                dispatcher,
                request,
                f"cleaner_reminder:{cleaner_id}:{target.isoformat()}:{mode}",
            )
            queued += 1
        except Exception:  # noqa: BLE001
            await session.rollback()
            failed += 1
            logger.exception("cleaner_reminder_failed", extra={"extra": {"cleaner_id": cleaner_id, "mode": mode}})
        finally:
            clear_log_context()
    logger.info(
        "cleaner_reminders_done",
        extra={"extra": {"mode": mode, "cleaners": len(jobs_by_cleaner), "queued": queued, "skipped": skipped}},
    )
    return {"cleaners": len(jobs_by_cleaner), "queued": queued, "skipped": skipped, "failed": failed}
