import logging
from datetime import date, datetime, timezone
from typing import Any

import stripe
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from booking_funnel.domain.activity.service import log_activity
from booking_funnel.domain.checkout.service import NOT_CONFIGURED_MESSAGE
from booking_funnel.domain.errors import PaymentProviderError
from booking_funnel.domain.jobs import statuses
from booking_funnel.domain.jobs.db_models import Job, Payment
from booking_funnel.domain.jobs.service import transition_job_status
from booking_funnel.domain.notifications import templates
from booking_funnel.domain.notifications.dispatcher import NotificationDispatcher
from booking_funnel.domain.notifications.schemas import NotificationRequest
from booking_funnel.domain.outbox.service import deliver_outbox_events, enqueue_notification
from booking_funnel.domain.payments.webhook import PAYMENT_TYPE_REMAINING
from booking_funnel.infra.logging import clear_log_context, update_log_context
from booking_funnel.infra.metrics import metrics
from booking_funnel.infra.stripe_client import call_stripe_client_method
from booking_funnel.infra.stripe_idempotency import make_stripe_idempotency_key
from booking_funnel.settings import settings
from booking_funnel.shared.circuit_breaker import CircuitBreakerOpenError

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (
    CircuitBreakerOpenError,
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
    TimeoutError,
)


def _field(source: Any, key: str) -> Any:
    if isinstance(source, dict):
        return source.get(key)
    return getattr(source, key, None)


async def due_jobs(session: AsyncSession, today: date) -> list[Job]:
    result = await session.execute(
        select(Job)
        .options(selectinload(Job.customer))
        .where(
            Job.scheduled_date == today,
            Job.payment_status.in_(statuses.CHARGEABLE_PAYMENT_STATUSES),
            Job.status.in_(statuses.BOOKED_STATUSES),
            Job.remaining_cents > 0,
        )
        .order_by(Job.created_at, Job.job_id)
    )
    return list(result.scalars().all())


async def _notify(session: AsyncSession, job: Job, template: str, body: str) -> list:
    customer = job.customer
    return await enqueue_notification(
        session,
        NotificationRequest(
            channel="sms",
            recipient_type="customer",
            recipient_id=customer.customer_id,
            phone=customer.phone,
            template=template,
            sms_body=body,
            related_entity_type="job",
            related_entity_id=job.job_id,
        ),
        dedupe_prefix=f"{template}:{job.job_id}:{job.scheduled_date.isoformat() if job.scheduled_date else 'none'}",
    )


async def _mark_failed(session: AsyncSession, job: Job, error: str) -> list:
    amount = job.remaining_cents
    job.payment_status = statuses.PAYMENT_FAILED
    if statuses.can_transition(job.status, statuses.CHARGE_FAILED):
        transition_job_status(job, statuses.CHARGE_FAILED)
    job.charge_error = error[:500]
    log_activity(
        session,
        entity_type="job",
        entity_id=job.job_id,
        action="charge_failed",
        details={"error": job.charge_error, "amount_cents": amount},
    )
    message = templates.charge_failed(customer_name=job.customer.name, amount_cents=amount)
    events = await _notify(session, job, templates.CHARGE_FAILED, message.sms_body)
    metrics.record_balance_charge("failed")
    logger.warning("balance_charge_failed", extra={"extra": {"job_id": job.job_id, "error": job.charge_error}})
    return events


async def _charge_job(session: AsyncSession, stripe_client: Any, job: Job) -> tuple[dict[str, Any], list]:
    customer = job.customer
    stripe_customer_id = job.stripe_customer_id or customer.stripe_customer_id
    if not stripe_customer_id:
        events = await _mark_failed(session, job, "No Stripe customer on file")
        return {"job_id": job.job_id, "success": False, "error": job.charge_error}, events

    payment_method_id = await call_stripe_client_method(
        stripe_client, "find_default_payment_method", stripe_customer_id
    )
    if not payment_method_id:
        events = await _mark_failed(session, job, "No saved payment method")
        return {"job_id": job.job_id, "success": False, "error": job.charge_error}, events

    amount = job.remaining_cents
    intent = await call_stripe_client_method(
        stripe_client,
        "create_payment_intent",
        amount_cents=amount,
        currency=settings.stripe_currency,
        customer_id=stripe_customer_id,
        payment_method_id=payment_method_id,
        metadata={
            "job_id": job.job_id,
            "customer_id": customer.customer_id,
            "payment_type": PAYMENT_TYPE_REMAINING,
        },
        description=f"{settings.business_name} cleaning balance",
        idempotency_key=make_stripe_idempotency_key(
            "remaining_balance",
            job_id=job.job_id,
            amount_cents=amount,
            currency=settings.stripe_currency,
        ),
    )
    intent_id = _field(intent, "id")
    intent_status = _field(intent, "status")
    if intent_status != "succeeded":
        events = await _mark_failed(session, job, f"Payment status: {intent_status}")
        return {"job_id": job.job_id, "success": False, "error": job.charge_error, "payment_intent_id": intent_id}, events

    job.payment_status = statuses.PAYMENT_PAID
    job.remaining_cents = 0
    job.remaining_paid_at = datetime.now(tz=timezone.utc)
    job.remaining_payment_intent_id = intent_id
    job.charge_error = None
    session.add(
        Payment(
            job_id=job.job_id,
            customer_id=customer.customer_id,
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
        details={"amount_cents": amount, "payment_intent_id": intent_id},
    )
    message = templates.remaining_charged(customer_name=customer.name, amount_cents=amount)
    events = await _notify(session, job, templates.REMAINING_CHARGED, message.sms_body)
    metrics.record_balance_charge("charged")
    logger.info("balance_charged", extra={"extra": {"job_id": job.job_id, "amount_cents": amount}})
    return {"job_id": job.job_id, "success": True, "payment_intent_id": intent_id}, events


async def _record_card_failure(session: AsyncSession, job_id: str, error: str) -> tuple[dict[str, Any], list]:
    job = await session.scalar(select(Job).options(selectinload(Job.customer)).where(Job.job_id == job_id))
    if job is None:
        return {"job_id": job_id, "success": False, "error": error}, []
    events = await _mark_failed(session, job, error)
    return {"job_id": job_id, "success": False, "error": job.charge_error}, events


def _skipped(job_id: str, exc: Exception) -> dict[str, Any]:
    metrics.record_balance_charge("skipped")
    return {"job_id": job_id, "success": False, "skipped": True, "error": type(exc).__name__}


async def charge_remaining_balances(
    session: AsyncSession,
    stripe_client: Any,
    dispatcher: NotificationDispatcher,
    today: date | None = None,
) -> dict[str, Any]:
    """Charge the saved card for every job due today.

    Each job commits on its own. Only card-side failures mark a job
    ``charge_failed``; provider outages and unexpected errors leave it due
    so the next run picks it up again.
    """
    if not getattr(stripe_client, "configured", True):
        logger.error("balance_charge_not_configured")
        raise PaymentProviderError(kind="configuration", message=NOT_CONFIGURED_MESSAGE)

    today = today or date.today()
    jobs = await due_jobs(session, today)
    job_ids = [job.job_id for job in jobs]
    results: list[dict[str, Any]] = []
    for job_id in job_ids:
        update_log_context(job_id=job_id)
        try:
            job = await session.scalar(select(Job).options(selectinload(Job.customer)).where(Job.job_id == job_id))
            try:
                result, events = await _charge_job(session, stripe_client, job)
                await session.commit()
            except stripe.CardError as exc:
                await session.rollback()
                error = getattr(exc, "user_message", None) or str(exc) or "Card declined"
                result, events = await _record_card_failure(session, job_id, error)
                await session.commit()
            except TRANSIENT_ERRORS as exc:
                await session.rollback()
                logger.warning(
                    "balance_charge_deferred",
                    extra={"extra": {"job_id": job_id, "reason": type(exc).__name__}},
                )
                result, events = _skipped(job_id, exc), []
            except Exception as exc:  # noqa: BLE001
                await session.rollback()
                logger.exception(
                    "balance_charge_error",
                    extra={"extra": {"job_id": job_id, "reason": type(exc).__name__}},
                )
                result, events = _skipped(job_id, exc), []
            results.append(result)
            await deliver_outbox_events(session, [event.event_id for event in events], dispatcher)
        finally:
            clear_log_context()

    charged = sum(1 for result in results if result["success"])
    skipped = sum(1 for result in results if result.get("skipped"))
    summary = {
        "processed": len(results),
        "charged": charged,
        "failed": len(results) - charged - skipped,
        "skipped": skipped,
        "results": results,
    }
    logger.info(
        "balance_charge_run_complete",
        extra={
            "extra": {
                "processed": summary["processed"],
                "charged": charged,
                "failed": summary["failed"],
                "skipped": skipped,
            }
        },
    )
    return summary
