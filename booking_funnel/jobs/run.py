import argparse
import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import async_sessionmaker

from booking_funnel.domain.notifications.dispatcher import NotificationDispatcher
from booking_funnel.domain.outbox.service import process_outbox
from booking_funnel.domain.payments.balance import charge_remaining_balances
from booking_funnel.domain.reminders.service import (
    DAY_BEFORE,
    MORNING_OF,
    send_cleaner_reminders,
    send_day_before_reminders,
    send_weekly_schedules,
)
from booking_funnel.infra.communication import resolve_communication_adapter
from booking_funnel.infra.db import get_session_factory
from booking_funnel.infra.email import resolve_email_adapter
from booking_funnel.infra.logging import clear_log_context, configure_logging, update_log_context
from booking_funnel.infra.metrics import configure_metrics, metrics
from booking_funnel.infra.stripe_client import StripeClient
from booking_funnel.settings import settings

logger = logging.getLogger(__name__)

JOB_NAMES = (
    "charge-remaining",
    "day-before-reminders",
    "cleaner-day-before-reminders",
    "cleaner-morning-reminders",
    "weekly-schedules",
    "outbox-delivery",
)

_DISPATCHER: NotificationDispatcher | None = None
_STRIPE: StripeClient | None = None


def _summary(result: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in result.items() if isinstance(value, (int, float, str))}


async def _run_job(
    name: str,
    session_factory: async_sessionmaker,
    runner: Callable[[object], Awaitable[dict[str, Any]]],
) -> dict[str, Any]:
    update_log_context(job=name)
    try:
        async with session_factory() as session:
            result = await runner(session)
        logger.info("job_complete", extra={"extra": {"job": name, **_summary(result)}})
        metrics.record_job_success(name, datetime.now(tz=timezone.utc).timestamp())
        return result
    finally:
        clear_log_context()


def _job_runner(name: str) -> Callable:
    if name == "charge-remaining":
        return lambda session: charge_remaining_balances(session, _STRIPE, _DISPATCHER)
    if name == "day-before-reminders":
        return lambda session: send_day_before_reminders(session, _DISPATCHER)
    if name == "cleaner-day-before-reminders":
        return lambda session: send_cleaner_reminders(session, _DISPATCHER, mode=DAY_BEFORE)
    if name == "cleaner-morning-reminders":
        return lambda session: send_cleaner_reminders(session, _DISPATCHER, mode=MORNING_OF)
    if name == "weekly-schedules":
        return lambda session: send_weekly_schedules(session, _DISPATCHER)
    if name == "outbox-delivery":
        return lambda session: process_outbox(session, _DISPATCHER, limit=settings.job_outbox_batch_size)
    raise ValueError(f"unknown_job:{name}")


async def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run scheduled jobs")
    parser.add_argument("--job", action="append", dest="jobs", choices=JOB_NAMES, help="Job name to run")
    parser.add_argument("--interval", type=int, default=60, help="Seconds between loops when not using --once")
    parser.add_argument("--once", action="store_true", help="Run jobs once and exit")
    args = parser.parse_args(argv)

    global _DISPATCHER, _STRIPE
    configure_logging()
    configure_metrics(settings.metrics_enabled)
    _DISPATCHER = NotificationDispatcher(
        communication_adapter=resolve_communication_adapter(settings),
        email_adapter=resolve_email_adapter(settings),
    )
    _STRIPE = StripeClient(
        secret_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
    )
    session_factory = get_session_factory()

    job_names = args.jobs or list(JOB_NAMES)
    runners = [_job_runner(name) for name in job_names]

    while True:
        for name, runner in zip(job_names, runners):
            try:
                await _run_job(name, session_factory, runner)
            except Exception as exc:  # noqa: BLE001
                metrics.record_job_error(name, type(exc).__name__)
                logger.warning("job_failed", extra={"extra": {"job": name, "reason": type(exc).__name__}})
        if args.once:
            break
        await asyncio.sleep(max(args.interval, 1))


if __name__ == "__main__":
    asyncio.run(main())
