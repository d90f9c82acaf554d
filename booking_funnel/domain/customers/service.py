import logging
import re

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from booking_funnel.domain.customers.db_models import Customer, CUSTOMER_STATUS_ACTIVE
from booking_funnel.domain.errors import NotFoundError

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def phone_digits(phone: str | None) -> str:
    return re.sub(r"\D", "", phone or "")


async def get_customer(session: AsyncSession, customer_id: str) -> Customer:
    customer = await session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(detail="Customer not found")
    return customer


async def find_customer_by_email(session: AsyncSession, email: str) -> Customer | None:
    return await session.scalar(select(Customer).where(Customer.email == normalize_email(email)))


async def find_customer_by_phone(session: AsyncSession, phone: str | None) -> Customer | None:
    """Match on the last ten digits so +1 prefixes and punctuation do not matter."""
    digits = phone_digits(phone)[-10:]
    if len(digits) < 10:
        return None
    result = await session.execute(
        select(Customer).where(Customer.phone.is_not(None)).order_by(Customer.created_at.desc())
    )
    for customer in result.scalars():
        if phone_digits(customer.phone)[-10:] == digits:
            return customer
    return None


async def upsert_customer_from_booking(
    session: AsyncSession,
    *,
    email: str,
    name: str | None,
    phone: str | None,
    address: str | None,
    city: str | None,
    sqft: int | None,
    bedrooms: int | None,
    bathrooms: float | None,
    stripe_customer_id: str | None,
) -> Customer:
    customer = await find_customer_by_email(session, email)
    if customer is None:
        customer = Customer(
            email=normalize_email(email),
            name=name or normalize_email(email),
            phone=phone,
            address=address,
            city=city,
            sqft=sqft,
            bedrooms=bedrooms,
            bathrooms=bathrooms,
        )
        session.add(customer)
        logger.info("customer_created", extra={"extra": {"source": "checkout"}})
    else:
        customer.name = name or customer.name
        customer.phone = phone or customer.phone
        customer.address = address or customer.address
        customer.city = city or customer.city
        customer.sqft = sqft if sqft is not None else customer.sqft
        customer.bedrooms = bedrooms if bedrooms is not None else customer.bedrooms
        customer.bathrooms = bathrooms if bathrooms is not None else customer.bathrooms
    if stripe_customer_id:
        customer.stripe_customer_id = stripe_customer_id
    customer.status = CUSTOMER_STATUS_ACTIVE
    await session.flush()
    return customer


async def count_customers(session: AsyncSession) -> int:
    return int(await session.scalar(select(func.count()).select_from(Customer)) or 0)
