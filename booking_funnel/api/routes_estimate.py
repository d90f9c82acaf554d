from fastapi import APIRouter, Depends

from booking_funnel.api.dependencies import get_pricing_config
from booking_funnel.domain.pricing.config import PricingConfig
from booking_funnel.domain.pricing.estimator import estimate
from booking_funnel.domain.pricing.models import EstimateRequest, EstimateResponse

router = APIRouter()


@router.post("/v1/estimate", response_model=EstimateResponse)
async def create_estimate(
    request: EstimateRequest,
    pricing_config: PricingConfig = Depends(get_pricing_config),
) -> EstimateResponse:
    return estimate(request, pricing_config)
