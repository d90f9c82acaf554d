import math

from booking_funnel.domain.pricing.config import PricingConfig
from booking_funnel.domain.pricing.models import EstimateBreakdown, EstimateRequest, EstimateResponse

SQFT_BASE_THRESHOLD = 1000


def _round_to_step(value: float, step: float) -> float:
    # half-up; round() would use banker's rounding
    return math.floor(value / step + 0.5) * step


def _base_hours(sqft: int, base_hours: float, per_thousand: float) -> float:
    if sqft < SQFT_BASE_THRESHOLD:
        return base_hours
    return base_hours + (sqft - SQFT_BASE_THRESHOLD) / 1000 * per_thousand


def estimate(request: EstimateRequest, pricing: PricingConfig) -> EstimateResponse:
    constants = pricing.constants
    base_hours = _base_hours(request.sqft, constants.sqft_base_hours, constants.sqft_per_thousand_hours)
    room_hours = request.bathrooms * constants.bathroom_hours + request.bedrooms * constants.bedroom_hours
    total_hours = (base_hours + room_hours) * constants.organic_buffer

    raw_price = total_hours * constants.hourly_rate
    efficiency_applied = total_hours > constants.efficiency_threshold_hours
    price = raw_price * (1 - constants.efficiency_discount) if efficiency_applied else raw_price

    multiplier = float(constants.frequency_multipliers[request.frequency])
    price *= multiplier

    recurring_price = max(0.0, _round_to_step(price, constants.rounding_step))
    first_clean_price = recurring_price + constants.first_clean_premium
    effective_rate = price / total_hours if total_hours else 0.0

    return EstimateResponse(
        first_clean_price=round(first_clean_price, 2),
        recurring_price=round(recurring_price, 2),
        estimated_hours=round(total_hours, 2),
        duration_minutes=int(math.ceil(total_hours * 60)),
        frequency=request.frequency,
        breakdown=EstimateBreakdown(
            base_hours=round(base_hours, 4),
            room_hours=round(room_hours, 4),
            total_hours=round(total_hours, 4),
            raw_price=round(raw_price, 2),
            efficiency_discount_applied=efficiency_applied,
            frequency_multiplier=multiplier,
            price_before_rounding=round(price, 2),
            effective_hourly_rate=round(effective_rate, 4),
        ),
        pricing_config_version=pricing.version,
        config_hash=pricing.config_hash,
    )
