from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from booking_funnel.domain.activity.service import log_activity
from booking_funnel.domain.customers.service import upsert_customer_from_booking
from booking_funnel.domain.jobs import statuses
from booking_funnel.domain.jobs.db_models import Job, Payment
from booking_funnel.domain.jobs.service import transition_job_status
from booking_funnel.domain.notifications import templates
from booking_funnel.domain.notifications.schemas import NotificationRequest
from booking_funnel.domain.outbox.db_models import OutboxEvent
from booking_funnel.domain.outbox.service import enqueue_notification
from booking_funnel.infra.metrics import metrics

logger = logging.getLogger(__name__)

PAYMENT_TYPE_DEPOSIT = "deposit"
PAYMENT_TYPE_REMAINING = "remaining_balance"


def safe_get(source: object, key: str, default: Any | None = None) -> Any:
    if isinstance(source, dict):
        return source.get(key, default)
    return getattr(source, key, default)


def event_object(event: Any) -> Any:
    data = safe_get(event, "data", {}) or {}
    return safe_get(data, "object", {}) or {}


def event_metadata(event: Any) -> dict[str, Any]:
    metadata = safe_get(event_object(event), "metadata", {}) or {}
    if isinstance(metadata, dict):
        return metadata
    to_dict = getattr(metadata, "to_dict", None)
    return to_dict() if callable(to_dict) else dict(metadata)


def _int(value: Any) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _float(value: Any) -> float | None:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _date(value: Any) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        return None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


async def _lock_job(session: AsyncSession, job_id: str) -> Job | None:
    stmt = select(Job).options(selectinload(Job.customer)).where(Job.job_id == job_id).with_for_update()
    return await session.scalar(stmt)


def _job_from_metadata(job_id: str, customer_id: str, metadata: dict[str, Any]) -> Job:
    time_slot = metadata.get("time_slot") or None
    return Job(
        job_id=job_id,
        customer_id=customer_id,
        status=statuses.LEAD,
        payment_status=statuses.PAYMENT_PENDING,
        sqft=_int(metadata.get("sqft")),
        bedrooms=_int(metadata.get("bedrooms")),
        bathrooms=_float(metadata.get("bathrooms")),
        frequency=metadata.get("frequency") or "onetime",
        address=metadata.get("address") or None,
        city=metadata.get("city") or None,
        scheduled_date=_date(metadata.get("scheduled_date")),
        time_slot=time_slot if time_slot in statuses.TIME_SLOTS else None,
        total_price_cents=_int(metadata.get("total_cents")) or 0,
        deposit_cents=_int(metadata.get("deposit_cents")) or 0,
        remaining_cents=_int(metadata.get("remaining_cents")) or 0,
    )


async def handle_checkout_completed(session: AsyncSession, event: Any) -> tuple[bool, list[OutboxEvent], str | None]:
    payload = event_object(event)
    metadata = event_metadata(event)
    job_id = metadata.get("booking_id")
    if not job_id:
        logger.info("stripe_checkout_ignored", extra={"extra": {"reason": "missing_booking_id"}})
        return False, [], None
    if safe_get(payload, "payment_status") == "unpaid":
        logger.info("stripe_checkout_ignored", extra={"extra": {"reason": "unpaid", "job_id": job_id}})
        return False, [], job_id

    job = await _lock_job(session, job_id)
    if job is not None and job.payment_status in {statuses.PAYMENT_DEPOSIT_PAID, statuses.PAYMENT_PAID}:
        logger.info("stripe_checkout_ignored", extra={"extra": {"reason": "already_confirmed", "job_id": job_id}})
        return False, [], job_id
    if job is not None and not statuses.can_transition(job.status, statuses.CONFIRMED):
        logger.warning(
            "stripe_checkout_ignored",
            extra={"extra": {"reason": "invalid_status", "job_id": job_id, "status": job.status}},
        )
        return False, [], job_id

    customer_details = safe_get(payload, "customer_details", {}) or {}
    email = (
        metadata.get("customer_email")
        or safe_get(payload, "customer_email")
        or safe_get(customer_details, "email")
    )
    if not email:
        logger.warning("stripe_checkout_ignored", extra={"extra": {"reason": "missing_email", "job_id": job_id}})
        return False, [], job_id

    stripe_customer_id = safe_get(payload, "customer")
    customer = await upsert_customer_from_booking(
        session,
        email=email,
        name=metadata.get("customer_name") or safe_get(customer_details, "name"),
        phone=metadata.get("customer_phone") or safe_get(customer_details, "phone"),
        address=metadata.get("address") or None,
        city=metadata.get("city") or None,
        sqft=_int(metadata.get("sqft")),
        bedrooms=_int(metadata.get("bedrooms")),
        bathrooms=_float(metadata.get("bathrooms")),
        stripe_customer_id=stripe_customer_id,
    )
    if job is None:
        job = _job_from_metadata(job_id, customer.customer_id, metadata)
        session.add(job)
        logger.info("job_created_from_checkout", extra={"extra": {"job_id": job_id}})

    transition_job_status(job, statuses.CONFIRMED)
    payment_intent_id = safe_get(payload, "payment_intent")
    amount_total = _int(safe_get(payload, "amount_total"))
    job.payment_status = statuses.PAYMENT_DEPOSIT_PAID
    job.deposit_paid_at = _now()
    job.stripe_checkout_session_id = safe_get(payload, "id")
    job.stripe_customer_id = stripe_customer_id or customer.stripe_customer_id
    job.stripe_payment_intent_id = payment_intent_id
    if amount_total is not None and not job.deposit_cents:
        job.deposit_cents = amount_total
        job.remaining_cents = max(0, job.total_price_cents - amount_total)

    session.add(
        Payment(
            job_id=job.job_id,
            customer_id=customer.customer_id,
            amount_cents=amount_total if amount_total is not None else job.deposit_cents,
            payment_type=PAYMENT_TYPE_DEPOSIT,
            stripe_payment_intent_id=payment_intent_id,
            status="succeeded",
        )
    )
    log_activity(
        session,
        entity_type="job",
        entity_id=job.job_id,
        action="deposit_paid",
        details={"amount_cents": job.deposit_cents, "checkout_session_id": job.stripe_checkout_session_id},
        actor="customer",
    )
    message = templates.booking_confirmed(
        customer_name=customer.name,
        scheduled_date=job.scheduled_date,
        time_slot=job.time_slot,
        address=job.address,
        total_cents=job.total_price_cents,
        deposit_cents=job.deposit_cents,
        remaining_cents=job.remaining_cents,
    )
    events = await enqueue_notification(
        session,
        NotificationRequest(
            channel="both",
            recipient_type="customer",
            recipient_id=customer.customer_id,
            phone=customer.phone,
            email=customer.email,
            template=templates.BOOKING_CONFIRMED,
            sms_body=message.sms_body,
            email_subject=message.email_subject,
            email_html=message.email_html,
            related_entity_type="job",
            related_entity_id=job.job_id,
        ),
        dedupe_prefix=f"{templates.BOOKING_CONFIRMED}:{job.job_id}",
    )
    await session.flush()
    metrics.record_booking("confirmed")
    logger.info("booking_confirmed", extra={"extra": {"job_id": job.job_id}})
    return True, events, job.job_id


async def handle_remaining_succeeded(session: AsyncSession, event: Any) -> tuple[bool, list[OutboxEvent], str | None]:
    payload = event_object(event)
    job_id = event_metadata(event).get("job_id")
    job = await _lock_job(session, job_id)
    if job is None:
        logger.info("stripe_remaining_ignored", extra={"extra": {"reason": "job_not_found", "job_id": job_id}})
        return False, [], job_id
    if job.payment_status == statuses.PAYMENT_PAID:
        logger.info("stripe_remaining_ignored", extra={"extra": {"reason": "already_paid", "job_id": job_id}})
        return False, [], job_id

    intent_id = safe_get(payload, "id")
    amount = _int(safe_get(payload, "amount_received")) or _int(safe_get(payload, "amount")) or job.remaining_cents
    if job.status == statuses.CHARGE_FAILED:
        transition_job_status(job, statuses.CONFIRMED)
    job.payment_status = statuses.PAYMENT_PAID
    job.remaining_cents = 0
    job.remaining_paid_at = _now()
    job.remaining_payment_intent_id = intent_id
    job.charge_error = None
    existing = None
    if intent_id:
        existing = await session.scalar(select(Payment).where(Payment.stripe_payment_intent_id == intent_id))
    if existing is None:
        session.add(
            Payment(
                job_id=job.job_id,
                customer_id=job.customer_id,
                amount_cents=amount,
                payment_type=PAYMENT_TYPE_REMAINING,
                stripe_payment_intent_id=intent_id,
                status="succeeded",
            )
        )
    log_activity(
        session,
        entity_type="job",
        entity_id=job.job_id,
        action="remaining_charged",
        details={"amount_cents": amount, "payment_intent_id": intent_id, "source": "webhook"},
    )
    await session.flush()
    return True, [], job.job_id


async def handle_remaining_failed(session: AsyncSession, event: Any) -> tuple[bool, list[OutboxEvent], str | None]:
    payload = event_object(event)
    job_id = event_metadata(event).get("job_id")
    job = await _lock_job(session, job_id)
    if job is None:
        logger.info("stripe_remaining_ignored", extra={"extra": {"reason": "job_not_found", "job_id": job_id}})
        return False, [], job_id
    if job.payment_status == statuses.PAYMENT_PAID:
        logger.info("stripe_remaining_ignored", extra={"extra": {"reason": "already_paid", "job_id": job_id}})
        return False, [], job_id

    last_error = safe_get(payload, "last_payment_error") or {}
    message = safe_get(last_error, "message") or "Payment failed"
    job.payment_status = statuses.PAYMENT_FAILED
    if statuses.can_transition(job.status, statuses.CHARGE_FAILED):
        transition_job_status(job, statuses.CHARGE_FAILED)
    job.charge_error = str(message)[:500]
    log_activity(
        session,
        entity_type="job",
        entity_id=job.job_id,
        action="charge_failed",
        details={"error": job.charge_error, "payment_intent_id": safe_get(payload, "id"), "source": "webhook"},
    )
    await session.flush()
    return True, [], job.job_id


async def apply_stripe_event(session: AsyncSession, event: Any) -> tuple[bool, list[OutboxEvent], str | None]:
    """Apply a verified event; returns ``(processed, outbox_events, job_id)``.

    Flushes only. The caller owns the transaction together with the event ledger row.
    """
    event_type = safe_get(event, "type")
    metadata = event_metadata(event)
    if event_type == "checkout.session.completed":
        return await handle_checkout_completed(session, event)
    is_remaining = metadata.get("payment_type") == PAYMENT_TYPE_REMAINING and metadata.get("job_id")
    if event_type == "payment_intent.succeeded" and is_remaining:
        return await handle_remaining_succeeded(session, event)
    if event_type == "payment_intent.payment_failed" and is_remaining:
        return await handle_remaining_failed(session, event)
    logger.info("stripe_webhook_ignored", extra={"extra": {"event_type": event_type}})
    return False, [], metadata.get("booking_id") or metadata.get("job_id")
