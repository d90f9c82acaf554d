import asyncio
from datetime import date

import pytest
import stripe
from sqlalchemy import select

from booking_funnel.domain.checkout.service import NOT_CONFIGURED_MESSAGE
from booking_funnel.domain.errors import PaymentProviderError
from booking_funnel.domain.jobs import statuses
from booking_funnel.domain.jobs.db_models import Job, Payment
from booking_funnel.domain.notifications import templates
from booking_funnel.domain.notifications.dispatcher import NotificationDispatcher
from booking_funnel.domain.outbox.db_models import OutboxEvent
from booking_funnel.domain.payments.balance import charge_remaining_balances
from booking_funnel.infra.stripe_client import StripeClient
from booking_funnel.main import app
from booking_funnel.settings import settings
from booking_funnel.shared.circuit_breaker import CircuitBreakerOpenError
from tests.factories import FakeCommunicationAdapter, create_customer, create_job

TODAY = date(2030, 5, 6)


class FakeStripe:
    def __init__(
        self,
        *,
        payment_method="pm_card",
        payment_methods: dict[str, str | None] | None = None,
        status="succeeded",
        errors: dict[str, Exception] | None = None,
        configured=True,
    ):
        self.payment_method = payment_method
        self.payment_methods = payment_methods or {}
        self.status = status
        self.errors = errors or {}
        self.configured = configured
        self.intents: list[dict] = []

    async def find_default_payment_method(self, customer_id):
        return self.payment_methods.get(customer_id, self.payment_method)

    async def create_payment_intent(self, **kwargs):
        error = self.errors.get(kwargs["metadata"]["job_id"])
        if error is not None:
            raise error
        self.intents.append(kwargs)
        return {"id": f"pi_{len(self.intents)}", "status": self.status}


def _run(async_session_maker, stripe_client, sms=None):
    dispatcher = NotificationDispatcher(communication_adapter=sms or FakeCommunicationAdapter())

    async def _charge():
        async with async_session_maker() as session:
            return await charge_remaining_balances(session, stripe_client, dispatcher, today=TODAY)

    return asyncio.run(_charge())


def _seed(async_session_maker, *jobs: dict, customer_overrides: dict | None = None) -> list[str]:
    async def _create():
        async with async_session_maker() as session:
            customer = await create_customer(session, **{"stripe_customer_id": "cus_123", **(customer_overrides or {})})
            created = [await create_job(session, customer, **values) for values in jobs]
            return [job.job_id for job in created]

    return asyncio.run(_create())


def _jobs(async_session_maker) -> dict[str, Job]:
    async def _fetch():
        async with async_session_maker() as session:
            result = await session.execute(select(Job))
            return {job.job_id: job for job in result.scalars().all()}

    return asyncio.run(_fetch())


def test_charges_due_jobs_and_notifies(async_session_maker):
    (job_id,) = _seed(async_session_maker, {})
    stripe_client = FakeStripe()
    sms = FakeCommunicationAdapter()

    summary = _run(async_session_maker, stripe_client, sms)

    assert summary["processed"] == 1
    assert summary["charged"] == 1
    assert summary["failed"] == 0
    intent = stripe_client.intents[0]
    assert intent["amount_cents"] == 23200
    assert intent["customer_id"] == "cus_123"
    assert intent["payment_method_id"] == "pm_card"
    assert intent["metadata"]["payment_type"] == "remaining_balance"
    assert intent["idempotency_key"]

    job = _jobs(async_session_maker)[job_id]
    assert job.payment_status == statuses.PAYMENT_PAID
    assert job.remaining_cents == 0
    assert job.remaining_payment_intent_id == "pi_1"
    assert len(sms.sent) == 1

    async def _payments():
        async with async_session_maker() as session:
            return (await session.execute(select(Payment))).scalars().all()

    payments = asyncio.run(_payments())
    assert [(payment.payment_type, payment.amount_cents) for payment in payments] == [("remaining_balance", 23200)]


def test_skips_jobs_not_due(async_session_maker):
    _seed(
        async_session_maker,
        {"scheduled_date": date(2030, 5, 7)},
        {"payment_status": statuses.PAYMENT_PAID, "remaining_cents": 0},
        {"status": statuses.CANCELLED},
        {"remaining_cents": 0},
    )
    stripe_client = FakeStripe()

    summary = _run(async_session_maker, stripe_client)

    assert summary["processed"] == 0
    assert stripe_client.intents == []


def test_missing_stripe_customer_marks_charge_failed(async_session_maker):
    (job_id,) = _seed(async_session_maker, {}, customer_overrides={"stripe_customer_id": None})

    summary = _run(async_session_maker, FakeStripe())

    assert summary["failed"] == 1
    job = _jobs(async_session_maker)[job_id]
    assert job.status == statuses.CHARGE_FAILED
    assert job.payment_status == statuses.PAYMENT_FAILED
    assert job.charge_error == "No Stripe customer on file"


def test_missing_payment_method_marks_charge_failed(async_session_maker):
    (job_id,) = _seed(async_session_maker, {})

    summary = _run(async_session_maker, FakeStripe(payment_method=None))

    assert summary["results"][0] == {"job_id": job_id, "success": False, "error": "No saved payment method"}
    assert _jobs(async_session_maker)[job_id].status == statuses.CHARGE_FAILED


def test_non_succeeded_intent_is_a_failure(async_session_maker):
    (job_id,) = _seed(async_session_maker, {})

    summary = _run(async_session_maker, FakeStripe(status="requires_action"))

    assert summary["charged"] == 0
    job = _jobs(async_session_maker)[job_id]
    assert job.charge_error == "Payment status: requires_action"
    assert job.remaining_cents == 23200


def _outbox_keys(async_session_maker) -> set[str]:
    async def _outbox():
        async with async_session_maker() as session:
            return (await session.execute(select(OutboxEvent))).scalars().all()

    return {event.dedupe_key for event in asyncio.run(_outbox())}


def test_job_without_saved_card_does_not_block_others(async_session_maker):
    async def _create():
        async with async_session_maker() as session:
            no_card = await create_customer(session, stripe_customer_id="cus_nocard")
            with_card = await create_customer(
                session, stripe_customer_id="cus_card", email="sam@example.com", phone="+16305550102"
            )
            first = await create_job(session, no_card)
            second = await create_job(session, with_card)
            return first.job_id, second.job_id

    failing_id, ok_id = asyncio.run(_create())
    stripe_client = FakeStripe(payment_methods={"cus_nocard": None, "cus_card": "pm_visa"})

    summary = _run(async_session_maker, stripe_client)

    assert summary["processed"] == 2
    assert summary["charged"] == 1
    assert summary["failed"] == 1
    assert [intent["payment_method_id"] for intent in stripe_client.intents] == ["pm_visa"]
    jobs = _jobs(async_session_maker)
    assert jobs[failing_id].status == statuses.CHARGE_FAILED
    assert jobs[failing_id].charge_error == "No saved payment method"
    assert jobs[ok_id].payment_status == statuses.PAYMENT_PAID

    keys = _outbox_keys(async_session_maker)
    assert f"{templates.CHARGE_FAILED}:{failing_id}:{TODAY.isoformat()}:sms" in keys
    assert f"{templates.REMAINING_CHARGED}:{ok_id}:{TODAY.isoformat()}:sms" in keys


def test_card_decline_marks_charge_failed(async_session_maker):
    (job_id,) = _seed(async_session_maker, {})
    decline = stripe.CardError("Your card was declined.", None, "card_declined")
    sms = FakeCommunicationAdapter()

    summary = _run(async_session_maker, FakeStripe(errors={job_id: decline}), sms)

    assert summary["failed"] == 1
    job = _jobs(async_session_maker)[job_id]
    assert job.status == statuses.CHARGE_FAILED
    assert job.payment_status == statuses.PAYMENT_FAILED
    assert job.charge_error == "Your card was declined."
    assert len(sms.sent) == 1


@pytest.mark.parametrize(
    "error",
    [
        stripe.APIConnectionError("connection reset"),
        stripe.RateLimitError("too many requests"),
        CircuitBreakerOpenError("circuit_open:stripe"),
    ],
)
def test_provider_outage_leaves_job_due_for_next_run(async_session_maker, error):
    (job_id,) = _seed(async_session_maker, {})
    sms = FakeCommunicationAdapter()

    summary = _run(async_session_maker, FakeStripe(errors={job_id: error}), sms)

    assert summary["processed"] == 1
    assert summary["failed"] == 0
    assert summary["skipped"] == 1
    assert summary["results"][0]["skipped"] is True
    job = _jobs(async_session_maker)[job_id]
    assert job.status == statuses.CONFIRMED
    assert job.payment_status == statuses.PAYMENT_DEPOSIT_PAID
    assert job.charge_error is None
    assert sms.sent == []
    assert _outbox_keys(async_session_maker) == set()

    retry = _run(async_session_maker, FakeStripe())

    assert retry["charged"] == 1
    assert _jobs(async_session_maker)[job_id].payment_status == statuses.PAYMENT_PAID


def test_unexpected_error_does_not_blame_the_card(async_session_maker):
    failing_id, ok_id = _seed(async_session_maker, {}, {})

    summary = _run(async_session_maker, FakeStripe(errors={failing_id: RuntimeError("stripe exploded")}))

    assert summary["charged"] == 1
    assert summary["skipped"] == 1
    jobs = _jobs(async_session_maker)
    assert jobs[failing_id].payment_status == statuses.PAYMENT_DEPOSIT_PAID
    assert jobs[ok_id].payment_status == statuses.PAYMENT_PAID


def test_unconfigured_stripe_fails_without_touching_jobs(async_session_maker, monkeypatch):
    monkeypatch.setattr(settings, "stripe_secret_key", None)
    (job_id,) = _seed(async_session_maker, {})
    stripe_client = StripeClient(secret_key=None, webhook_secret=None)

    for _ in range(2):
        with pytest.raises(PaymentProviderError) as excinfo:
            _run(async_session_maker, stripe_client)
        assert excinfo.value.kind == "configuration"

    job = _jobs(async_session_maker)[job_id]
    assert job.status == statuses.CONFIRMED
    assert job.payment_status == statuses.PAYMENT_DEPOSIT_PAID
    assert job.remaining_cents == 23200
    assert _outbox_keys(async_session_maker) == set()


def test_charge_remaining_endpoint_reports_missing_configuration(client, async_session_maker):
    _seed(async_session_maker, {"scheduled_date": date.today()})
    app.state.stripe_client = FakeStripe(configured=False)

    response = client.post("/v1/jobs/charge-remaining")

    assert response.status_code == 500
    assert response.headers["content-type"].startswith("application/problem+json")
    assert response.json()["detail"] == NOT_CONFIGURED_MESSAGE
    assert response.json()["title"] == "Payments Unavailable"


def test_charge_remaining_endpoint_requires_service_role(client, monkeypatch):
    monkeypatch.setattr(settings, "service_role_key", "svc-secret")

    assert client.post("/v1/jobs/charge-remaining").status_code == 401


def test_charge_remaining_endpoint_runs_charger(client, async_session_maker):
    _seed(async_session_maker, {"scheduled_date": date.today()})
    app.state.stripe_client = FakeStripe()

    response = client.post("/v1/jobs/charge-remaining")

    assert response.status_code == 200
    assert response.json()["charged"] == 1
