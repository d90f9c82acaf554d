import asyncio

import pytest
from sqlalchemy import select

from booking_funnel.domain.notifications.db_models import CommunicationLogEntry
from booking_funnel.domain.notifications.dispatcher import NotificationDispatcher
from booking_funnel.domain.notifications.phone import normalize_e164
from booking_funnel.domain.notifications.schemas import NotificationRequest
from tests.factories import FakeCommunicationAdapter, FakeEmailAdapter, create_customer


class ExplodingSms:
    async def send_sms(self, *, to_number, body):
        raise RuntimeError("twilio unreachable")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("(630) 555-0101", "+16305550101"),
        ("630.555.0101", "+16305550101"),
        ("+1 630 555 0101", "+16305550101"),
        ("+44 20 7946 0958", "+442079460958"),
        ("", None),
        (None, None),
    ],
)
def test_normalize_e164(raw, expected):
    assert normalize_e164(raw) == expected


def _dispatch(async_session_maker, dispatcher, request):
    async def _send():
        async with async_session_maker() as session:
            results = await dispatcher.dispatch(session, request)
            await session.commit()
            logs = (await session.execute(select(CommunicationLogEntry))).scalars().all()
            return results, logs

    return asyncio.run(_send())


def test_dispatch_both_channels_records_log_entries(async_session_maker):
    sms = FakeCommunicationAdapter()
    email = FakeEmailAdapter()
    dispatcher = NotificationDispatcher(communication_adapter=sms, email_adapter=email)
    request = NotificationRequest(
        channel="both",
        phone="(630) 555-0101",
        email="jane@example.com",
        template="booking_confirmed",
        sms_body="You're booked!",
        email_subject="Booking confirmed",
        email_html="<p>You're booked!</p>",
        related_entity_type="job",
        related_entity_id="job-1",
    )

    results, logs = _dispatch(async_session_maker, dispatcher, request)

    assert [(result.channel, result.status) for result in results] == [("sms", "sent"), ("email", "sent")]
    assert sms.sent == [{"to": "+16305550101", "body": "You're booked!"}]
    assert email.sent[0]["recipient"] == "jane@example.com"
    assert {log.channel for log in logs} == {"sms", "email"}
    sms_log = next(log for log in logs if log.channel == "sms")
    assert sms_log.recipient_contact == "+16305550101"
    assert sms_log.status == "sent"
    assert sms_log.external_id == "SM1"
    assert sms_log.related_entity_id == "job-1"


def test_opted_out_customer_is_not_texted(async_session_maker):
    async def _seed():
        async with async_session_maker() as session:
            customer = await create_customer(session, sms_opted_out=True)
            return customer.customer_id

    customer_id = asyncio.run(_seed())
    sms = FakeCommunicationAdapter()
    dispatcher = NotificationDispatcher(communication_adapter=sms)
    request = NotificationRequest(
        channel="sms",
        recipient_id=customer_id,
        phone="+16305550101",
        template="day_before_reminder",
        sms_body="See you tomorrow",
    )

    results, logs = _dispatch(async_session_maker, dispatcher, request)

    assert results[0].status == "failed"
    assert results[0].error == "sms_opted_out"
    assert sms.sent == []
    assert logs[0].status == "failed"
    assert logs[0].error_message == "sms_opted_out"


def test_adapter_exception_becomes_failed_result(async_session_maker):
    dispatcher = NotificationDispatcher(communication_adapter=ExplodingSms())
    request = NotificationRequest(channel="sms", phone="6305550101", template="reminder", sms_body="hi")

    results, logs = _dispatch(async_session_maker, dispatcher, request)

    assert results[0].status == "failed"
    assert results[0].error == "sms_send_error"
    assert len(logs) == 1


def test_missing_contact_is_reported(async_session_maker):
    dispatcher = NotificationDispatcher(
        communication_adapter=FakeCommunicationAdapter(), email_adapter=FakeEmailAdapter()
    )
    request = NotificationRequest(
        channel="email", template="receipt", email_subject="Receipt", email_html="<p>Thanks</p>"
    )

    results, _ = _dispatch(async_session_maker, dispatcher, request)

    assert results[0].error == "missing_recipient"


def test_request_requires_channel_content():
    with pytest.raises(ValueError):
        NotificationRequest(channel="sms", phone="6305550101", template="reminder")
    with pytest.raises(ValueError):
        NotificationRequest(channel="email", email="jane@example.com", template="reminder", email_subject="Hi")


def test_send_endpoint_reports_per_channel_results(client, sms_adapter):
    response = client.post(
        "/v1/notifications/send",
        json={
            "channel": "both",
            "phone": "630-555-0101",
            "email": "jane@example.com",
            "template": "manual",
            "sms_body": "Hello",
            "email_subject": "Hello",
            "email_html": "<p>Hello</p>",
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert [result["status"] for result in body["results"]] == ["sent", "failed"]
    assert body["results"][1]["error"] == "email_disabled"
    assert sms_adapter.sent[0]["to"] == "+16305550101"


def test_send_endpoint_validates_payload(client):
    response = client.post("/v1/notifications/send", json={"channel": "fax", "template": "manual"})

    assert response.status_code == 422
