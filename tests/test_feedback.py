import asyncio
from datetime import datetime, timezone

from sqlalchemy import select

from booking_funnel.domain.customers.db_models import Customer, CustomerNote
from booking_funnel.domain.jobs import statuses
from booking_funnel.domain.jobs.db_models import Job
from booking_funnel.domain.notifications import templates
from booking_funnel.domain.outbox.db_models import OutboxEvent
from booking_funnel.settings import settings
from tests.factories import create_customer, create_job


def _seed(async_session_maker, *, status: str = statuses.COMPLETED, **customer_overrides) -> tuple[str, str]:
    async def _create():
        async with async_session_maker() as session:
            customer = await create_customer(session, **customer_overrides)
            job = await create_job(
                session,
                customer,
                status=status,
                completed_at=datetime.now(tz=timezone.utc) if status == statuses.COMPLETED else None,
            )
            return customer.customer_id, job.job_id

    return asyncio.run(_create())


def _outbox(async_session_maker) -> dict[str, OutboxEvent]:
    async def _fetch():
        async with async_session_maker() as session:
            result = await session.execute(select(OutboxEvent))
            return {event.dedupe_key: event for event in result.scalars().all()}

    return asyncio.run(_fetch())


def test_high_rating_requests_review_once(client, async_session_maker):
    customer_id, job_id = _seed(async_session_maker)

    response = client.post("/v1/feedback", json={"job_id": job_id, "rating": 5, "feedback": "Spotless!"})

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "job_id": job_id,
        "rating": 5,
        "review_requested": True,
        "escalated": False,
    }
    assert f"{templates.GOOGLE_REVIEW_REQUEST}:{customer_id}:sms" in _outbox(async_session_maker)

    async def _second_job():
        async with async_session_maker() as session:
            customer = await session.get(Customer, customer_id)
            job = await create_job(
                session, customer, status=statuses.COMPLETED, completed_at=datetime.now(tz=timezone.utc)
            )
            return job.job_id

    second_job_id = asyncio.run(_second_job())
    again = client.post("/v1/feedback", json={"job_id": second_job_id, "rating": 4})

    assert again.json()["review_requested"] is False


def test_low_rating_creates_note_and_escalates(client, async_session_maker, monkeypatch):
    monkeypatch.setattr(settings, "manager_email", "manager@example.com")
    customer_id, job_id = _seed(async_session_maker)

    response = client.post("/v1/feedback", json={"job_id": job_id, "rating": 2, "feedback": "Missed the kitchen"})

    body = response.json()
    assert body["review_requested"] is False
    assert body["escalated"] is True

    async def _fetch():
        async with async_session_maker() as session:
            notes = (await session.execute(select(CustomerNote))).scalars().all()
            job = await session.get(Job, job_id)
            return notes, job

    notes, job = asyncio.run(_fetch())
    assert len(notes) == 1
    assert notes[0].customer_id == customer_id
    assert "Missed the kitchen" in notes[0].content
    assert job.customer_rating == 2
    assert job.customer_feedback == "Missed the kitchen"

    outbox = _outbox(async_session_maker)
    assert f"{templates.LOW_RATING_RESPONSE}:{job_id}:sms" in outbox
    escalation = outbox[f"{templates.COMPLAINT_ESCALATION}:{job_id}:email"]
    assert escalation.payload_json["email"] == "manager@example.com"
    assert escalation.payload_json["recipient_type"] == "manager"


def test_low_rating_without_manager_email_is_not_escalated(client, async_session_maker):
    _, job_id = _seed(async_session_maker)

    response = client.post("/v1/feedback", json={"job_id": job_id, "rating": 3})

    assert response.json()["escalated"] is False


def test_feedback_requires_completed_job(client, async_session_maker):
    _, job_id = _seed(async_session_maker, status=statuses.CONFIRMED)

    response = client.post("/v1/feedback", json={"job_id": job_id, "rating": 5})

    assert response.status_code == 400
    assert response.json()["detail"] == "Feedback can only be left for completed jobs"


def test_feedback_cannot_be_submitted_twice(client, async_session_maker):
    _, job_id = _seed(async_session_maker)
    client.post("/v1/feedback", json={"job_id": job_id, "rating": 5})

    response = client.post("/v1/feedback", json={"job_id": job_id, "rating": 1})

    assert response.status_code == 400
    assert response.json()["detail"] == "Feedback already submitted for this job"


def test_rating_out_of_range_is_rejected(client, async_session_maker):
    _, job_id = _seed(async_session_maker)

    assert client.post("/v1/feedback", json={"job_id": job_id, "rating": 6}).status_code == 422
    assert client.post("/v1/feedback", json={"job_id": job_id, "rating": 0}).status_code == 422


def test_unknown_job_is_not_found(client):
    response = client.post("/v1/feedback", json={"job_id": "missing", "rating": 5})

    assert response.status_code == 404
