import asyncio

import pytest
from sqlalchemy import select

from booking_funnel.domain.activity.db_models import ActivityLogEntry
from booking_funnel.domain.errors import DomainError
from booking_funnel.domain.jobs import statuses
from booking_funnel.domain.jobs.db_models import Job
from booking_funnel.domain.jobs.service import transition_job_status
from booking_funnel.domain.notifications import templates
from booking_funnel.domain.outbox.db_models import OutboxEvent
from booking_funnel.settings import settings
from tests.factories import create_cleaner, create_customer, create_job


def _seed(async_session_maker, **job_overrides) -> str:
    async def _create():
        async with async_session_maker() as session:
            customer = await create_customer(session)
            cleaner = await create_cleaner(session)
            job = await create_job(session, customer, cleaner_id=cleaner.cleaner_id, **job_overrides)
            return job.job_id

    return asyncio.run(_create())


def test_complete_job_sends_feedback_link(client, async_session_maker, sms_adapter, email_adapter):
    job_id = _seed(async_session_maker)

    response = client.post(f"/v1/jobs/{job_id}/complete")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == statuses.COMPLETED
    assert body["completed_at"] is not None
    assert body["feedback_url"] == f"{settings.public_base_url.rstrip('/')}/feedback?job={job_id}"
    assert body["notifications_queued"] == 2
    assert "rating 1-5" in sms_adapter.sent[0]["body"]
    assert body["feedback_url"] in email_adapter.sent[0]["html"]
    assert len(email_adapter.sent) == 1

    async def _fetch():
        async with async_session_maker() as session:
            job = await session.get(Job, job_id)
            outbox = (await session.execute(select(OutboxEvent))).scalars().all()
            activity = (await session.execute(select(ActivityLogEntry))).scalars().all()
            return job, outbox, activity

    job, outbox, activity = asyncio.run(_fetch())
    assert job.status == statuses.COMPLETED
    assert {event.dedupe_key for event in outbox} == {
        f"{templates.JOB_COMPLETE}:{job_id}:sms",
        f"{templates.JOB_COMPLETE}:{job_id}:email",
    }
    assert all(event.status == "sent" for event in outbox)
    assert [(entry.action, entry.actor) for entry in activity] == [("completed", "service_role")]


def test_completing_twice_is_rejected(client, async_session_maker):
    job_id = _seed(async_session_maker)
    client.post(f"/v1/jobs/{job_id}/complete")

    response = client.post(f"/v1/jobs/{job_id}/complete")

    assert response.status_code == 400
    assert response.json()["detail"] == "Job is already completed"


def test_unpaid_lead_cannot_be_completed(client, async_session_maker):
    job_id = _seed(async_session_maker, status=statuses.LEAD, payment_status=statuses.PAYMENT_PENDING)

    response = client.post(f"/v1/jobs/{job_id}/complete")

    assert response.status_code == 400


def test_complete_requires_service_role(client, async_session_maker, monkeypatch):
    monkeypatch.setattr(settings, "service_role_key", "svc-secret")
    job_id = _seed(async_session_maker)

    assert client.post(f"/v1/jobs/{job_id}/complete").status_code == 401
    ok = client.post(f"/v1/jobs/{job_id}/complete", headers={"Authorization": "Bearer svc-secret"})
    assert ok.status_code == 200


def test_status_transitions():
    job = Job(job_id="job-1", status=statuses.LEAD)

    assert transition_job_status(job, statuses.CONFIRMED) is True
    assert transition_job_status(job, statuses.CONFIRMED) is False
    assert transition_job_status(job, statuses.CHARGE_FAILED) is True
    assert transition_job_status(job, statuses.CONFIRMED) is True
    assert transition_job_status(job, statuses.COMPLETED) is True
    with pytest.raises(DomainError):
        transition_job_status(job, statuses.CANCELLED)
    with pytest.raises(DomainError):
        transition_job_status(job, "archived")
