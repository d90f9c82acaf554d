from datetime import date
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, confloat, conint, field_validator

from booking_funnel.domain.subscriptions.statuses import normalize_frequency, normalize_weekday
from booking_funnel.settings import settings


class SubscriptionCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    customer_id: str = Field(min_length=1)
    frequency: str
    preferred_day: str
    preferred_time: Literal["morning", "afternoon"]
    base_price: confloat(gt=0, le=100000)
    months_ahead: conint(ge=1, le=12) = Field(default_factory=lambda: settings.subscription_default_months_ahead)

    @field_validator("frequency")
    @classmethod
    def validate_frequency(cls, value: str) -> str:
        return normalize_frequency(value)

    @field_validator("preferred_day")
    @classmethod
    def validate_day(cls, value: str) -> str:
        return normalize_weekday(value)


class SubscriptionCreateResponse(BaseModel):
    subscription_id: str
    jobs_created: int
    first_job_date: date | None
    last_job_date: date | None
    duration_minutes: int
