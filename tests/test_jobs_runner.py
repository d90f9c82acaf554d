import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from booking_funnel.domain.outbox.db_models import OutboxEvent
from booking_funnel.jobs import run


def test_job_names_map_to_runners():
    for name in run.JOB_NAMES:
        assert callable(run._job_runner(name))


def test_run_once_processes_outbox(async_session_maker, monkeypatch):
    async def _seed():
        async with async_session_maker() as session:
            session.add(
                OutboxEvent(
                    kind="notification",
                    payload_json={
                        "channel": "sms",
                        "phone": "+16305550101",
                        "template": "day_before_reminder",
                        "sms_body": "See you tomorrow",
                    },
                    dedupe_key="reminder:job-1:sms",
                    status="pending",
                    attempts=0,
                    next_attempt_at=datetime.now(tz=timezone.utc) - timedelta(seconds=5),
                )
            )
            await session.commit()

    asyncio.run(_seed())
    monkeypatch.setattr(run, "get_session_factory", lambda: async_session_maker)
    monkeypatch.setattr(run, "configure_logging", lambda: None)

    asyncio.run(run.main(["--job", "outbox-delivery", "--once"]))

    async def _fetch():
        async with async_session_maker() as session:
            return (await session.execute(select(OutboxEvent))).scalars().one()

    event = asyncio.run(_fetch())
    # the noop adapter used in tests leaves the event queued for another attempt
    assert event.attempts == 1
    assert event.status == "retry"
    assert event.last_error == "sms_disabled"


def test_failing_job_does_not_stop_the_loop(async_session_maker, monkeypatch):
    calls = []

    def _runner(name):
        async def _run(session):
            calls.append(name)
            if name == "charge-remaining":
                raise RuntimeError("stripe down")
            return {"sent": 0}

        return _run

    monkeypatch.setattr(run, "get_session_factory", lambda: async_session_maker)
    monkeypatch.setattr(run, "configure_logging", lambda: None)
    monkeypatch.setattr(run, "_job_runner", _runner)

    asyncio.run(run.main(["--job", "charge-remaining", "--job", "weekly-schedules", "--once"]))

    assert calls == ["charge-remaining", "weekly-schedules"]
