import asyncio
from datetime import datetime, timezone

from sqlalchemy import select

from booking_funnel.api import routes_sms
from booking_funnel.domain.activity.db_models import ActivityLogEntry
from booking_funnel.domain.customers.db_models import Customer, CustomerNote
from booking_funnel.domain.jobs import statuses
from booking_funnel.domain.jobs.db_models import Job
from booking_funnel.domain.notifications.db_models import CommunicationLogEntry
from booking_funnel.infra.communication import compute_twilio_signature
from booking_funnel.settings import settings
from tests.factories import create_customer, create_job

INBOUND_URL = "/v1/sms/inbound"
EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


def _seed(async_session_maker, *, completed_job: bool = False, **customer_overrides) -> tuple[str, str | None]:
    async def _create():
        async with async_session_maker() as session:
            customer = await create_customer(session, phone="(630) 555-0101", **customer_overrides)
            job_id = None
            if completed_job:
                job = await create_job(
                    session,
                    customer,
                    status=statuses.COMPLETED,
                    completed_at=datetime.now(tz=timezone.utc),
                )
                job_id = job.job_id
            return customer.customer_id, job_id

    return asyncio.run(_create())


def _customer(async_session_maker, customer_id: str) -> Customer:
    async def _fetch():
        async with async_session_maker() as session:
            return await session.get(Customer, customer_id)

    return asyncio.run(_fetch())


def _text(client, body: str, from_number: str = "+16305550101"):
    return client.post(INBOUND_URL, data={"From": from_number, "Body": body})


def test_stop_opts_customer_out(client, async_session_maker):
    customer_id, _ = _seed(async_session_maker)

    response = _text(client, " STOP ")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    assert "unsubscribed" in response.text
    assert response.text.startswith('<?xml version="1.0" encoding="UTF-8"?><Response><Message>')
    assert _customer(async_session_maker, customer_id).sms_opted_out is True

    async def _activity():
        async with async_session_maker() as session:
            result = await session.execute(select(ActivityLogEntry).where(ActivityLogEntry.entity_id == customer_id))
            return [(entry.action, entry.actor, entry.details) for entry in result.scalars().all()]

    assert asyncio.run(_activity()) == [("sms_unsubscribed", "customer", {"keyword": "stop"})]


def test_start_opts_customer_back_in(client, async_session_maker):
    customer_id, _ = _seed(async_session_maker, sms_opted_out=True)

    response = _text(client, "start")

    assert "Welcome back" in response.text
    assert _customer(async_session_maker, customer_id).sms_opted_out is False


def test_high_rating_records_feedback_and_requests_review(client, async_session_maker, sms_adapter):
    customer_id, job_id = _seed(async_session_maker, completed_job=True)

    response = _text(client, "5")

    assert "5-star" in response.text

    async def _fetch():
        async with async_session_maker() as session:
            job = await session.get(Job, job_id)
            customer = await session.get(Customer, customer_id)
            return job, customer

    job, customer = asyncio.run(_fetch())
    assert job.customer_rating == 5
    assert customer.google_review_requested is True
    assert len(sms_adapter.sent) == 1
    assert "review" in sms_adapter.sent[0]["body"].lower()


def test_low_rating_creates_complaint_note(client, async_session_maker):
    customer_id, job_id = _seed(async_session_maker, completed_job=True)

    response = _text(client, "2")

    assert "manager will reach out" in response.text

    async def _notes():
        async with async_session_maker() as session:
            return (await session.execute(select(CustomerNote))).scalars().all()

    notes = asyncio.run(_notes())
    assert [note.note_type for note in notes] == ["complaint"]
    assert job_id in notes[0].content


def test_rating_without_completed_job(client, async_session_maker):
    _seed(async_session_maker)

    response = _text(client, "4")

    assert "Thank you for your rating" in response.text


def test_unknown_sender_gets_contact_reply(client, async_session_maker):
    response = _text(client, "hello?", from_number="+13125550000")

    assert settings.business_phone in response.text

    async def _logs():
        async with async_session_maker() as session:
            inbound = (await session.execute(select(CommunicationLogEntry))).scalars().all()
            activity = (await session.execute(select(ActivityLogEntry))).scalars().all()
            return inbound, activity

    inbound, activity = asyncio.run(_logs())
    assert inbound == []
    assert [entry.action for entry in activity] == ["sms_received"]


def test_known_sender_message_is_logged(client, async_session_maker):
    customer_id, _ = _seed(async_session_maker)

    response = _text(client, "Can you come at 10 instead?", from_number="630-555-0101")

    assert response.status_code == 200

    async def _logs():
        async with async_session_maker() as session:
            return (await session.execute(select(CommunicationLogEntry))).scalars().all()

    (entry,) = asyncio.run(_logs())
    assert entry.template == "inbound"
    assert entry.recipient_id == customer_id


def test_signature_required_when_enabled(client, monkeypatch):
    monkeypatch.setattr(settings, "twilio_validate_signature", True)
    monkeypatch.setattr(settings, "twilio_auth_token", "twilio-token")
    params = {"From": "+16305550101", "Body": "STOP"}

    rejected = client.post(INBOUND_URL, data=params, headers={"X-Twilio-Signature": "forged"})
    assert rejected.status_code == 403

    signature = compute_twilio_signature("twilio-token", f"http://testserver{INBOUND_URL}", params)
    accepted = client.post(INBOUND_URL, data=params, headers={"X-Twilio-Signature": signature})
    assert accepted.status_code == 200


def test_internal_error_returns_empty_twiml(client, monkeypatch):
    async def _explode(session, from_number, body):
        raise RuntimeError("db down")

    monkeypatch.setattr(routes_sms, "handle_inbound_sms", _explode)

    response = _text(client, "hello")

    assert response.status_code == 200
    assert response.text == EMPTY_TWIML
