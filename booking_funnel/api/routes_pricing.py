from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from booking_funnel.api.auth import require_service_role
from booking_funnel.api.dependencies import get_pricing_config
from booking_funnel.domain.pricing import service
from booking_funnel.domain.pricing.config import PricingConfig
from booking_funnel.domain.pricing.models import PricingSettingsResponse, PricingSettingsUpdate
from booking_funnel.infra.db import get_db_session

router = APIRouter(tags=["pricing-settings"])


def _serialize(config: PricingConfig) -> PricingSettingsResponse:
    return PricingSettingsResponse(
        version=config.version,
        config_hash=config.config_hash,
        constants=config.constants,
    )


@router.get("/v1/pricing-settings", response_model=PricingSettingsResponse)
async def get_public_pricing_settings(
    pricing_config: PricingConfig = Depends(get_pricing_config),
) -> PricingSettingsResponse:
    return _serialize(pricing_config)


@router.get(
    "/v1/admin/pricing-settings",
    response_model=PricingSettingsResponse,
    dependencies=[Depends(require_service_role)],
)
async def get_pricing_settings(
    pricing_config: PricingConfig = Depends(get_pricing_config),
) -> PricingSettingsResponse:
    return _serialize(pricing_config)


@router.put(
    "/v1/admin/pricing-settings",
    response_model=PricingSettingsResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_service_role)],
)
async def update_pricing_settings(
    payload: PricingSettingsUpdate,
    session: AsyncSession = Depends(get_db_session),
) -> PricingSettingsResponse:
    config = await service.save_pricing_settings(session, payload, created_by="service_role")
    return _serialize(config)
