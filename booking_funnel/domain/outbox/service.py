from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from booking_funnel.domain.errors import DomainError, NotFoundError
from booking_funnel.domain.notifications.dispatcher import NotificationDispatcher
from booking_funnel.domain.notifications.schemas import NotificationRequest
from booking_funnel.domain.outbox.db_models import OutboxEvent
from booking_funnel.infra.logging import clear_log_context, update_log_context
from booking_funnel.infra.metrics import metrics
from booking_funnel.settings import settings

logger = logging.getLogger(__name__)

KIND_NOTIFICATION = "notification"
PENDING_STATUSES = {"pending", "retry"}
TERMINAL_ERRORS = {"sms_opted_out", "missing_recipient", "invalid_payload"}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _backoff_delay(attempt: int) -> timedelta:
    delay = settings.outbox_base_backoff_seconds * max(1, 2 ** max(0, attempt - 1))
    return timedelta(seconds=delay)


def _next_attempt(attempt: int) -> datetime:
    return _now() + _backoff_delay(attempt)


def _is_terminal(error: str | None) -> bool:
    if not error:
        return False
    return error in TERMINAL_ERRORS or error.endswith("_not_configured")


async def enqueue_outbox_event(
    session: AsyncSession,
    *,
    kind: str,
    payload: dict,
    dedupe_key: str,
) -> OutboxEvent:
    """Insert an outbox row unless one with ``dedupe_key`` exists; returns whichever row wins."""
    values = {
        "kind": kind,
        "payload_json": payload,
        "dedupe_key": dedupe_key,
        "status": "pending",
        "attempts": 0,
        "next_attempt_at": _now(),
        "last_error": None,
    }
    bind = session.get_bind()
    dialect = bind.dialect.name if bind else ""
    if dialect in {"postgresql", "sqlite"}:
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = insert(OutboxEvent).values(**values).on_conflict_do_nothing(index_elements=["dedupe_key"])
        result = await session.execute(stmt.returning(OutboxEvent))
        created = result.scalar_one_or_none()
        if created is not None:
            return created
    existing = await session.scalar(select(OutboxEvent).where(OutboxEvent.dedupe_key == dedupe_key))
    if existing is not None:
        logger.info("outbox_duplicate_skipped", extra={"extra": {"dedupe_key": dedupe_key}})
        return existing
    event = OutboxEvent(**values)
    session.add(event)
    await session.flush()
    return event


async def enqueue_notification(
    session: AsyncSession, request: NotificationRequest, *, dedupe_prefix: str
) -> list[OutboxEvent]:
    """Stage one outbox row per channel, keyed ``{dedupe_prefix}:{channel}``."""
    events = []
    for channel in request.channels:
        single = request.model_copy(update={"channel": channel})
        events.append(
            await enqueue_outbox_event(
                session,
                kind=KIND_NOTIFICATION,
                payload=single.model_dump(mode="json"),
                dedupe_key=f"{dedupe_prefix}:{channel}",
            )
        )
    return events


async def _deliver_notification(
    session: AsyncSession, dispatcher: NotificationDispatcher, payload: dict
) -> tuple[bool, str | None]:
    try:
        request = NotificationRequest.model_validate(payload)
    except ValidationError:
        return False, "invalid_payload"
    results = await dispatcher.dispatch(session, request)
    failures = [result.error or "send_failed" for result in results if result.status != "sent"]
    if failures:
        return False, failures[0]
    return True, None


async def deliver_outbox_event(
    session: AsyncSession, event: OutboxEvent, dispatcher: NotificationDispatcher
) -> tuple[bool, str | None]:
    attempts = (event.attempts or 0) + 1
    event.attempts = attempts
    if event.kind == KIND_NOTIFICATION:
        delivered, error = await _deliver_notification(session, dispatcher, event.payload_json or {})
    else:
        delivered, error = False, "unknown_kind"
    if delivered:
        event.status = "sent"
        event.next_attempt_at = None
        event.last_error = None
    else:
        event.last_error = error or "failed"
        if attempts >= settings.outbox_max_attempts or _is_terminal(error):
            event.status = "dead"
            event.next_attempt_at = None
            logger.warning(
                "outbox_event_dead",
                extra={"extra": {"event_id": event.event_id, "kind": event.kind, "error": event.last_error}},
            )
        else:
            event.status = "retry"
            event.next_attempt_at = _next_attempt(attempts)
    await session.flush()
    return delivered, event.last_error


async def deliver_outbox_events(
    session: AsyncSession, event_ids: Iterable[str], dispatcher: NotificationDispatcher
) -> dict[str, int]:
    """Deliver freshly committed events right away; failures stay queued for the retry job."""
    ids = list(dict.fromkeys(event_ids))
    if not ids:
        return {"sent": 0, "failed": 0}
    result = await session.execute(
        select(OutboxEvent).where(OutboxEvent.event_id.in_(ids), OutboxEvent.status.in_(PENDING_STATUSES))
    )
    sent = 0
    failed = 0
    for event in result.scalars().all():
        delivered, _ = await deliver_outbox_event(session, event, dispatcher)
        if delivered:
            sent += 1
        else:
            failed += 1
    await session.commit()
    return {"sent": sent, "failed": failed}


async def process_outbox(
    session: AsyncSession, dispatcher: NotificationDispatcher, *, limit: int = 50
) -> dict[str, int]:
    now = _now()
    result = await session.execute(
        select(OutboxEvent)
        .where(OutboxEvent.status.in_(PENDING_STATUSES), OutboxEvent.next_attempt_at <= now)
        .order_by(OutboxEvent.created_at)
        .limit(limit)
    )
    events = result.scalars().all()
    sent = 0
    dead = 0
    for event in events:
        update_log_context(outbox_event_id=event.event_id)
        try:
            delivered, _ = await deliver_outbox_event(session, event, dispatcher)
            if delivered:
                sent += 1
            elif event.status == "dead":
                dead += 1
        finally:
            clear_log_context()
    if events:
        await session.commit()
    await _record_outbox_depth(session)
    return {"sent": sent, "dead": dead, "pending": len(events)}


async def _record_outbox_depth(session: AsyncSession) -> None:
    counts = await outbox_counts_by_status(session, ["pending", "retry", "dead"])
    for status, count in counts.items():
        metrics.set_outbox_depth(status, count)


async def outbox_counts_by_status(session: AsyncSession, statuses: Iterable[str]) -> dict[str, int]:
    statuses = list(statuses)
    counts: dict[str, int] = {status: 0 for status in statuses}
    result = await session.execute(
        select(OutboxEvent.status, func.count()).where(OutboxEvent.status.in_(statuses)).group_by(OutboxEvent.status)
    )
    for status, count in result.all():
        counts[status] = int(count)
    return counts


async def replay_outbox_event(session: AsyncSession, event_id: str) -> OutboxEvent:
    event = await session.get(OutboxEvent, event_id)
    if event is None:
        raise NotFoundError(detail="Outbox event not found")
    if event.status != "dead":
        raise DomainError(detail="Only dead outbox events can be replayed")
    event.status = "pending"
    event.attempts = 0
    event.next_attempt_at = _now()
    event.last_error = None
    await session.commit()
    logger.info("outbox_event_replayed", extra={"extra": {"event_id": event_id}})
    return event
