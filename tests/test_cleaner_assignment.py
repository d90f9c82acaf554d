import asyncio
from collections import Counter
from datetime import date

from sqlalchemy import select

from booking_funnel.domain.activity.db_models import ActivityLogEntry
from booking_funnel.domain.cleaners.db_models import Cleaner
from booking_funnel.domain.jobs.db_models import Job
from booking_funnel.main import app
from tests.factories import FakeEmailAdapter, create_cleaner, create_customer, create_job


def _seed_jobs(async_session_maker, count: int, **job_overrides) -> list[str]:
    async def _seed():
        async with async_session_maker() as session:
            customer = await create_customer(session)
            job_ids = []
            for _ in range(count):
                job = await create_job(session, customer, **job_overrides)
                job_ids.append(job.job_id)
            return job_ids

    return asyncio.run(_seed())


def _seed_cleaners(async_session_maker, *cleaners: dict) -> list[str]:
    async def _seed():
        async with async_session_maker() as session:
            created = [await create_cleaner(session, **values) for values in cleaners]
            return [cleaner.cleaner_id for cleaner in created]

    return asyncio.run(_seed())


def test_round_robin_spreads_jobs_evenly(client, async_session_maker, email_adapter):
    cleaner_ids = _seed_cleaners(
        async_session_maker,
        {"name": "Maria", "email": "maria@example.com"},
        {"name": "Ana", "email": "ana@example.com"},
    )
    job_ids = _seed_jobs(async_session_maker, 4)

    assigned = []
    for job_id in job_ids:
        response = client.post(f"/v1/jobs/{job_id}/assign-cleaner")
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["cleaner_notified"] is True
        assigned.append(body["cleaner_id"])

    assert Counter(assigned) == {cleaner_ids[0]: 2, cleaner_ids[1]: 2}
    assert assigned[0] != assigned[1]

    async def _fetch():
        async with async_session_maker() as session:
            cleaners = (await session.execute(select(Cleaner))).scalars().all()
            jobs = (await session.execute(select(Job))).scalars().all()
            return cleaners, jobs

    cleaners, jobs = asyncio.run(_fetch())
    assert sorted(cleaner.total_assignments for cleaner in cleaners) == [2, 2]
    assert all(job.cleaning_instructions for job in jobs)
    assert all(job.cleaner_notified_at is not None for job in jobs)
    assert len(email_adapter.sent) == 4


def test_cleaners_outside_day_or_area_are_skipped(client, async_session_maker, email_adapter):
    _seed_cleaners(
        async_session_maker,
        {"name": "Weekend Only", "available_days": ["saturday", "sunday"]},
        {"name": "Other Town", "service_areas": ["Aurora"]},
        {"name": "Inactive", "is_active": False},
    )
    (eligible_id,) = _seed_cleaners(async_session_maker, {"name": "Eligible", "email": "eligible@example.com"})
    (job_id,) = _seed_jobs(async_session_maker, 1)

    response = client.post(f"/v1/jobs/{job_id}/assign-cleaner")

    assert response.json()["cleaner_id"] == eligible_id


def test_cleaner_without_service_areas_covers_everywhere(client, async_session_maker):
    (cleaner_id,) = _seed_cleaners(async_session_maker, {"name": "Floater", "service_areas": []})
    (job_id,) = _seed_jobs(async_session_maker, 1, city="Aurora")

    response = client.post(f"/v1/jobs/{job_id}/assign-cleaner")

    assert response.json()["cleaner_id"] == cleaner_id


def test_no_available_cleaner_requires_manual_assignment(client, async_session_maker):
    _seed_cleaners(async_session_maker, {"name": "Weekend Only", "available_days": ["saturday"]})
    (job_id,) = _seed_jobs(async_session_maker, 1)

    response = client.post(f"/v1/jobs/{job_id}/assign-cleaner")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["requires_manual_assignment"] is True
    assert body["error"] == "No cleaners available for this date"

    async def _fetch():
        async with async_session_maker() as session:
            job = await session.get(Job, job_id)
            activity = (await session.execute(select(ActivityLogEntry))).scalars().all()
            return job, activity

    job, activity = asyncio.run(_fetch())
    assert job.cleaner_id is None
    assert [entry.action for entry in activity] == ["assignment_failed"]


def test_notification_failure_keeps_assignment(client, async_session_maker):
    app.state.email_adapter = FakeEmailAdapter(raises=RuntimeError("smtp down"))
    (cleaner_id,) = _seed_cleaners(async_session_maker, {"name": "Maria"})
    (job_id,) = _seed_jobs(async_session_maker, 1)

    response = client.post(f"/v1/jobs/{job_id}/assign-cleaner")

    body = response.json()
    assert body["success"] is True
    assert body["cleaner_id"] == cleaner_id
    assert body["cleaner_notified"] is False

    async def _fetch():
        async with async_session_maker() as session:
            return await session.get(Job, job_id)

    job = asyncio.run(_fetch())
    assert job.cleaner_id == cleaner_id
    assert job.cleaner_notified_at is None


def test_unknown_job_returns_404(client):
    response = client.post("/v1/jobs/does-not-exist/assign-cleaner")

    assert response.status_code == 404
    assert response.json()["title"] == "Not Found"


def test_cancelled_job_cannot_be_assigned(client, async_session_maker):
    _seed_cleaners(async_session_maker, {"name": "Maria"})
    (job_id,) = _seed_jobs(async_session_maker, 1, status="cancelled", scheduled_date=date(2030, 5, 6))

    response = client.post(f"/v1/jobs/{job_id}/assign-cleaner")

    assert response.status_code == 400
