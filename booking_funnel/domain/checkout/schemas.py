from datetime import date
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, confloat, conint

from booking_funnel.domain.pricing.models import Frequency


class BookingDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sqft: conint(ge=0, le=20000) | None = None
    bedrooms: conint(ge=0, le=20) | None = None
    bathrooms: confloat(ge=0.0, le=20.0) | None = None
    frequency: Frequency = Frequency.onetime
    address: str | None = Field(default=None, max_length=255)
    city: str | None = Field(default=None, max_length=100)
    scheduled_date: date | None = None
    time_slot: Literal["morning", "afternoon"] | None = None


class CheckoutRequest(BaseModel):
    total_amount: confloat(gt=0, le=100000)
    customer_email: EmailStr
    customer_name: str | None = Field(default=None, max_length=255)
    customer_phone: str | None = Field(default=None, max_length=32)
    booking_details: BookingDetails = Field(default_factory=BookingDetails)
    success_url: str | None = None
    cancel_url: str | None = None


class CheckoutResponse(BaseModel):
    session_id: str
    url: str | None
    customer_id: str
    booking_id: str
    deposit_amount: float
    remaining_amount: float
