from __future__ import annotations

import hashlib
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from booking_funnel.api.auth import require_service_role
from booking_funnel.domain.notifications.dispatcher import resolve_dispatcher
from booking_funnel.domain.outbox.service import deliver_outbox_events
from booking_funnel.domain.payments.balance import charge_remaining_balances
from booking_funnel.domain.payments.db_models import StripeEvent
from booking_funnel.domain.payments.webhook import apply_stripe_event, safe_get
from booking_funnel.infra import stripe_client as stripe_infra
from booking_funnel.infra.db import get_db_session
from booking_funnel.infra.metrics import metrics
from booking_funnel.settings import settings
from booking_funnel.shared.circuit_breaker import CircuitBreakerOpenError

router = APIRouter()
logger = logging.getLogger(__name__)

WEBHOOK_SOURCE = "stripe"
SETTLED_STATUSES = {"succeeded", "ignored"}


def _stripe_client(request: Request):
    return stripe_infra.resolve_client(request.app.state)


def _unverified_allowed() -> bool:
    return settings.stripe_webhook_allow_unverified and settings.app_env == "dev"


async def _load_event(http_request: Request, payload: bytes) -> Any:
    stripe_client = _stripe_client(http_request)
    if not settings.stripe_webhook_secret:
        if not _unverified_allowed():
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Stripe webhook disabled")
        logger.warning("stripe_webhook_unverified")
        try:
            return stripe_client.parse_unverified(payload)
        except ValueError as exc:
            metrics.record_webhook(WEBHOOK_SOURCE, "error")
            metrics.record_webhook_error("invalid_payload")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid Stripe webhook") from exc

    sig_header = http_request.headers.get("Stripe-Signature")
    try:
        return await stripe_infra.call_stripe_client_method(
            stripe_client, "verify_webhook", payload=payload, signature=sig_header
        )
    except CircuitBreakerOpenError as exc:
        metrics.record_webhook_error("stripe_unavailable")
        metrics.record_stripe_circuit_open()
        logger.warning("stripe_webhook_circuit_open", extra={"extra": {"reason": type(exc).__name__}})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Stripe temporarily unavailable",
        ) from exc
    except Exception as exc:  # noqa: BLE001
        metrics.record_webhook(WEBHOOK_SOURCE, "error")
        metrics.record_webhook_error("invalid_signature")
        logger.warning("stripe_webhook_invalid", extra={"extra": {"reason": type(exc).__name__}})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid Stripe webhook") from exc


async def _record_failure(
    session: AsyncSession,
    *,
    event_id: str,
    payload_hash: str,
    event_type: str | None,
    error: Exception,
) -> None:
    record = await session.get(StripeEvent, event_id)
    if record is not None and record.status in SETTLED_STATUSES:
        logger.info(
            "stripe_webhook_failure_not_recorded",
            extra={"extra": {"event_id": event_id, "status": record.status}},
        )
        return
    if record is None:
        record = StripeEvent(event_id=event_id, payload_hash=payload_hash, event_type=event_type, status="error")
        session.add(record)
    record.status = "error"
    record.last_error = str(error)[:1000] or type(error).__name__
    await session.commit()


async def _find_event(session: AsyncSession, event_id: str) -> StripeEvent | None:
    return await session.scalar(select(StripeEvent).where(StripeEvent.event_id == event_id).with_for_update())


async def _stripe_webhook_handler(http_request: Request, session: AsyncSession) -> dict[str, bool]:
    payload = await http_request.body()
    event = await _load_event(http_request, payload)

    event_id = safe_get(event, "id")
    if not event_id:
        metrics.record_webhook_error("missing_event_id")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing event id")
    event_id = str(event_id)
    payload_hash = hashlib.sha256(payload or b"").hexdigest()
    event_type = safe_get(event, "type")

    existing = await _find_event(session, event_id)
    if existing is not None:
        if existing.payload_hash != payload_hash:
            logger.warning("stripe_webhook_replayed_mismatch", extra={"extra": {"event_id": event_id}})
            metrics.record_webhook_error("payload_mismatch")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Event payload mismatch")
        if existing.status in SETTLED_STATUSES | {"processing"}:
            logger.info(
                "stripe_webhook_duplicate",
                extra={"extra": {"event_id": event_id, "status": existing.status}},
            )
            metrics.record_webhook(WEBHOOK_SOURCE, "duplicate")
            return {"received": True, "processed": False}
        record = existing
        record.status = "processing"
        record.last_error = None
        if not record.event_type:
            record.event_type = event_type
    else:
        record = StripeEvent(
            event_id=event_id,
            status="processing",
            payload_hash=payload_hash,
            event_type=event_type,
        )
        session.add(record)
        try:
            await session.flush()
        except IntegrityError:
            await session.rollback()
            logger.info("stripe_webhook_duplicate", extra={"extra": {"event_id": event_id, "status": "concurrent"}})
            metrics.record_webhook(WEBHOOK_SOURCE, "duplicate")
            return {"received": True, "processed": False}

    try:
        processed, events, job_id = await apply_stripe_event(session, event)
        record.status = "succeeded" if processed else "ignored"
        record.job_id = job_id
        await session.commit()
    except Exception as exc:  # noqa: BLE001
        await session.rollback()
        logger.exception(
            "stripe_webhook_error",
            extra={"extra": {"event_id": event_id, "reason": type(exc).__name__}},
        )
        metrics.record_webhook(WEBHOOK_SOURCE, "error")
        metrics.record_webhook_error("processing_error")
        await _record_failure(
            session, event_id=event_id, payload_hash=payload_hash, event_type=event_type, error=exc
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stripe webhook processing error",
        ) from exc

    metrics.record_webhook(WEBHOOK_SOURCE, "processed" if processed else "ignored")
    if events:
        await deliver_outbox_events(
            session, [outbox_event.event_id for outbox_event in events], resolve_dispatcher(http_request)
        )
    return {"received": True, "processed": processed}


@router.post("/v1/payments/stripe/webhook", status_code=status.HTTP_200_OK)
async def stripe_webhook(
    http_request: Request, session: AsyncSession = Depends(get_db_session)
) -> dict[str, bool]:
    return await _stripe_webhook_handler(http_request, session)


@router.post(
    "/v1/jobs/charge-remaining",
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_service_role)],
)
async def charge_remaining(
    http_request: Request, session: AsyncSession = Depends(get_db_session)
) -> dict[str, Any]:
    return await charge_remaining_balances(
        session,
        _stripe_client(http_request),
        resolve_dispatcher(http_request),
    )
