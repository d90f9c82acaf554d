import calendar
import logging
import uuid
from datetime import date, timedelta

from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from booking_funnel.domain.activity.service import log_activity
from booking_funnel.domain.customers.db_models import CUSTOMER_STATUS_ACTIVE, Customer
from booking_funnel.domain.customers.service import get_customer
from booking_funnel.domain.errors import DomainError
from booking_funnel.domain.jobs import statuses as job_statuses
from booking_funnel.domain.jobs.db_models import Job
from booking_funnel.domain.notifications import templates
from booking_funnel.domain.notifications.schemas import NotificationRequest
from booking_funnel.domain.outbox.db_models import OutboxEvent
from booking_funnel.domain.outbox.service import enqueue_notification
from booking_funnel.domain.subscriptions import statuses
from booking_funnel.domain.subscriptions.db_models import Subscription
from booking_funnel.domain.subscriptions.schemas import SubscriptionCreateRequest, SubscriptionCreateResponse

logger = logging.getLogger(__name__)

MIN_DURATION_MINUTES = 60


def estimate_duration_minutes(sqft: int | None, bedrooms: int | None, bathrooms: float | None) -> int:
    minutes = (
        (sqft or 0) / 500 * 30
        + max(0.0, (bathrooms or 0) - 2) * 15
        + max(0, (bedrooms or 0) - 3) * 10
    )
    return max(MIN_DURATION_MINUTES, int(round(minutes)))


def add_months(value: date, months: int) -> date:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _advance_to_weekday(value: date, weekday: int) -> date:
    return value + timedelta(days=(weekday - value.weekday()) % 7)


def generate_job_dates(frequency: str, preferred_day: str, *, start: date, months_ahead: int) -> list[date]:
    """Dates from ``start`` (inclusive) up to ``start + months_ahead`` months on the preferred weekday."""
    weekday = statuses.WEEKDAYS.index(preferred_day)
    end = add_months(start, months_ahead)
    current = _advance_to_weekday(start, weekday)
    dates: list[date] = []
    while current <= end:
        dates.append(current)
        if frequency == statuses.WEEKLY:
            current += timedelta(days=7)
        elif frequency == statuses.BIWEEKLY:
            current += timedelta(days=14)
        else:
            first_of_next = add_months(current.replace(day=1), 1)
            current = _advance_to_weekday(first_of_next, weekday)
    return dates


async def _booked_dates(session: AsyncSession, customer_id: str, start: date) -> set[date]:
    result = await session.execute(
        select(Job.scheduled_date).where(
            Job.customer_id == customer_id,
            Job.status.in_(job_statuses.BOOKED_STATUSES),
            Job.scheduled_date >= start,
        )
    )
    return {value for value in result.scalars().all() if value is not None}


async def _insert_jobs(session: AsyncSession, rows: list[dict]) -> None:
    if rows:
        await session.execute(insert(Job), rows)


async def create_subscription(
    session: AsyncSession, request: SubscriptionCreateRequest, *, today: date | None = None
) -> tuple[SubscriptionCreateResponse, list[OutboxEvent]]:
    customer = await get_customer(session, request.customer_id)
    active = await session.scalar(
        select(Subscription).where(
            Subscription.customer_id == customer.customer_id,
            Subscription.status == statuses.ACTIVE,
        )
    )
    if active is not None:
        raise DomainError(detail="Customer already has an active subscription")

    base_price_cents = int(round(request.base_price * 100))
    duration = estimate_duration_minutes(customer.sqft, customer.bedrooms, customer.bathrooms)
    subscription = Subscription(
        customer_id=customer.customer_id,
        frequency=request.frequency,
        preferred_day=request.preferred_day,
        preferred_time=request.preferred_time,
        base_price_cents=base_price_cents,
        status=statuses.ACTIVE,
    )
    session.add(subscription)
    await session.commit()
    subscription_id = subscription.subscription_id

    start = (today or date.today()) + timedelta(days=1)
    booked = await _booked_dates(session, customer.customer_id, start)
    job_dates = [
        value
        for value in generate_job_dates(
            request.frequency, request.preferred_day, start=start, months_ahead=request.months_ahead
        )
        if value not in booked
    ]
    rows = [_job_row(customer, subscription, value, duration) for value in job_dates]
    try:
        await _insert_jobs(session, rows)
        await session.commit()
    except Exception:
        await session.rollback()
        logger.exception(
            "subscription_jobs_insert_failed",
            extra={"extra": {"subscription_id": subscription_id, "jobs": len(rows)}},
        )
        await session.execute(delete(Subscription).where(Subscription.subscription_id == subscription_id))
        await session.commit()
        raise

    customer.status = CUSTOMER_STATUS_ACTIVE
    log_activity(
        session,
        entity_type="subscription",
        entity_id=subscription_id,
        action="subscription_created",
        details={
            "customer_id": customer.customer_id,
            "frequency": request.frequency,
            "preferred_day": request.preferred_day,
            "preferred_time": request.preferred_time,
            "base_price_cents": base_price_cents,
            "jobs_created": len(rows),
            "months_ahead": request.months_ahead,
        },
        actor="customer",
    )
    message = templates.recurring_setup(
        customer_name=customer.name,
        frequency=request.frequency,
        preferred_day=request.preferred_day,
        time_slot=request.preferred_time,
        first_date=job_dates[0] if job_dates else None,
        jobs_created=len(rows),
    )
    events = await enqueue_notification(
        session,
        NotificationRequest(
            channel="both",
            recipient_type="customer",
            recipient_id=customer.customer_id,
            phone=customer.phone,
            email=customer.email,
            template=templates.RECURRING_SETUP,
            sms_body=message.sms_body,
            email_subject=message.email_subject,
            email_html=message.email_html,
            related_entity_type="subscription",
            related_entity_id=subscription_id,
        ),
        dedupe_prefix=f"{templates.RECURRING_SETUP}:{subscription_id}",
    )
    await session.commit()
    logger.info(
        "subscription_created",
        extra={"extra": {"subscription_id": subscription_id, "jobs_created": len(rows)}},
    )
    return (
        SubscriptionCreateResponse(
            subscription_id=subscription_id,
            jobs_created=len(rows),
            first_job_date=job_dates[0] if job_dates else None,
            last_job_date=job_dates[-1] if job_dates else None,
            duration_minutes=duration,
        ),
        events,
    )


def _job_row(customer: Customer, subscription: Subscription, scheduled: date, duration: int) -> dict:
    price = subscription.base_price_cents
    return {
        "job_id": str(uuid.uuid4()),
        "customer_id": customer.customer_id,
        "subscription_id": subscription.subscription_id,
        "sqft": customer.sqft,
        "bedrooms": customer.bedrooms,
        "bathrooms": customer.bathrooms,
        "frequency": subscription.frequency,
        "address": customer.address,
        "city": customer.city,
        "scheduled_date": scheduled,
        "time_slot": subscription.preferred_time,
        "duration_minutes": duration,
        "recurring_price_cents": price,
        "total_price_cents": price,
        "deposit_cents": 0,
        "remaining_cents": price,
        "status": job_statuses.SCHEDULED,
        "payment_status": job_statuses.PAYMENT_PENDING,
        "stripe_customer_id": customer.stripe_customer_id,
    }
