from datetime import date

from booking_funnel.domain.cleaners.db_models import Cleaner
from booking_funnel.domain.customers.db_models import Customer
from booking_funnel.domain.jobs import statuses
from booking_funnel.domain.jobs.db_models import Job
from booking_funnel.infra.communication import CommunicationResult


class FakeCommunicationAdapter:
    def __init__(self, *, error_code: str | None = None) -> None:
        self.error_code = error_code
        self.sent: list[dict[str, str]] = []

    async def send_sms(self, *, to_number: str, body: str) -> CommunicationResult:
        self.sent.append({"to": to_number, "body": body})
        if self.error_code:
            return CommunicationResult(status="failed", error_code=self.error_code)
        return CommunicationResult(status="sent", provider_msg_id=f"SM{len(self.sent)}")


class FakeEmailAdapter:
    def __init__(self, *, error_code: str | None = None, raises: Exception | None = None) -> None:
        self.error_code = error_code
        self.raises = raises
        self.sent: list[dict[str, str]] = []

    async def send_email(
        self, recipient: str, subject: str, html: str, *, headers: dict[str, str] | None = None
    ) -> CommunicationResult:
        if self.raises is not None:
            raise self.raises
        self.sent.append({"recipient": recipient, "subject": subject, "html": html})
        if self.error_code:
            return CommunicationResult(status="failed", error_code=self.error_code)
        return CommunicationResult(status="sent", provider_msg_id=f"em_{len(self.sent)}")


async def create_customer(session, **overrides) -> Customer:
    values = {
        "name": "Jane Doe",
        "email": "jane@example.com",
        "phone": "+16305550101",
        "address": "12 Elm St",
        "city": "Naperville",
        "status": "active",
    }
    values.update(overrides)
    customer = Customer(**values)
    session.add(customer)
    await session.commit()
    return customer


async def create_job(session, customer: Customer, **overrides) -> Job:
    values = {
        "customer_id": customer.customer_id,
        "status": statuses.CONFIRMED,
        "payment_status": statuses.PAYMENT_DEPOSIT_PAID,
        "frequency": "biweekly",
        "sqft": 2400,
        "bedrooms": 4,
        "bathrooms": 2.5,
        "address": customer.address,
        "city": customer.city,
        "scheduled_date": date(2030, 5, 6),
        "time_slot": statuses.MORNING,
        "total_price_cents": 29000,
        "deposit_cents": 5800,
        "remaining_cents": 23200,
    }
    values.update(overrides)
    job = Job(**values)
    session.add(job)
    await session.commit()
    return job


async def create_cleaner(session, **overrides) -> Cleaner:
    values = {
        "name": "Maria",
        "email": "maria@example.com",
        "phone": "+16305550199",
        "is_active": True,
        "available_days": ["monday", "tuesday", "wednesday", "thursday", "friday"],
        "service_areas": ["Naperville"],
    }
    values.update(overrides)
    cleaner = Cleaner(**values)
    session.add(cleaner)
    await session.commit()
    return cleaner
