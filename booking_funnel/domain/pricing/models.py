from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, confloat, conint, field_validator


class Frequency(str, Enum):
    onetime = "onetime"
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"


class PricingConstants(BaseModel):
    model_config = ConfigDict(extra="forbid")

    sqft_base_hours: confloat(gt=0) = 2.0
    sqft_per_thousand_hours: confloat(ge=0) = 1.0
    bathroom_hours: confloat(ge=0) = 0.5
    bedroom_hours: confloat(ge=0) = 0.25
    organic_buffer: confloat(ge=1.0) = 1.15
    hourly_rate: confloat(gt=0) = 55.0
    efficiency_threshold_hours: confloat(ge=0) = 5.0
    efficiency_discount: confloat(ge=0, lt=1) = 0.10
    first_clean_premium: confloat(ge=0) = 50.0
    rounding_step: confloat(gt=0) = 5.0
    frequency_multipliers: Dict[Frequency, confloat(gt=0)] = Field(
        default_factory=lambda: {
            Frequency.onetime: 1.35,
            Frequency.weekly: 0.65,
            Frequency.biweekly: 0.75,
            Frequency.monthly: 0.90,
        }
    )

    @field_validator("frequency_multipliers")
    @classmethod
    def require_every_frequency(cls, value: Dict[Frequency, float]) -> Dict[Frequency, float]:
        missing = [frequency.value for frequency in Frequency if frequency not in value]
        if missing:
            raise ValueError(f"frequency_multipliers missing: {', '.join(missing)}")
        return value


class PricingSettingsUpdate(BaseModel):
    """Partial override of the pricing constants; omitted fields keep their current value."""

    model_config = ConfigDict(extra="forbid")

    sqft_base_hours: Optional[confloat(gt=0)] = None
    sqft_per_thousand_hours: Optional[confloat(ge=0)] = None
    bathroom_hours: Optional[confloat(ge=0)] = None
    bedroom_hours: Optional[confloat(ge=0)] = None
    organic_buffer: Optional[confloat(ge=1.0)] = None
    hourly_rate: Optional[confloat(gt=0)] = None
    efficiency_threshold_hours: Optional[confloat(ge=0)] = None
    efficiency_discount: Optional[confloat(ge=0, lt=1)] = None
    first_clean_premium: Optional[confloat(ge=0)] = None
    rounding_step: Optional[confloat(gt=0)] = None
    frequency_multipliers: Optional[Dict[Frequency, confloat(gt=0)]] = None


class PricingSettingsResponse(BaseModel):
    version: int
    config_hash: str
    constants: PricingConstants


class EstimateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    sqft: conint(ge=0, le=20000)
    bedrooms: conint(ge=0, le=20)
    bathrooms: confloat(ge=0.0, le=20.0)
    frequency: Frequency = Frequency.onetime


class EstimateBreakdown(BaseModel):
    base_hours: float
    room_hours: float
    total_hours: float
    raw_price: float
    efficiency_discount_applied: bool
    frequency_multiplier: float
    price_before_rounding: float
    effective_hourly_rate: float


class EstimateResponse(BaseModel):
    first_clean_price: float
    recurring_price: float
    estimated_hours: float
    duration_minutes: int
    frequency: Frequency
    breakdown: EstimateBreakdown
    pricing_config_version: int
    config_hash: str
