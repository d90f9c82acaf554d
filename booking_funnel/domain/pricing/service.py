import logging

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from booking_funnel.domain.errors import DomainError
from booking_funnel.domain.pricing.config import PricingConfig, build_pricing_config, merge_overrides
from booking_funnel.domain.pricing.db_models import PricingSettingsVersion
from booking_funnel.domain.pricing.models import PricingSettingsUpdate

logger = logging.getLogger(__name__)


async def load_pricing_config(session: AsyncSession) -> PricingConfig:
    latest = await session.scalar(
        select(PricingSettingsVersion).order_by(PricingSettingsVersion.version.desc()).limit(1)
    )
    if latest is None:
        return build_pricing_config({}, version=0)
    return build_pricing_config(latest.overrides, version=latest.version)


async def save_pricing_settings(
    session: AsyncSession, payload: PricingSettingsUpdate, *, created_by: str | None = None
) -> PricingConfig:
    current = await load_pricing_config(session)
    update = payload.model_dump(exclude_unset=True, exclude_none=True, mode="json")
    overrides = merge_overrides(current.overrides, update)
    try:
        config = build_pricing_config(overrides, version=current.version + 1)
    except ValidationError as exc:
        raise DomainError(
            detail="Pricing settings are invalid",
            errors=[
                {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
                for error in exc.errors()
            ],
        ) from exc

    session.add(
        PricingSettingsVersion(
            version=config.version,
            overrides=overrides,
            config_hash=config.config_hash,
            created_by=created_by,
        )
    )
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise DomainError(
            detail="Pricing settings changed concurrently, reload and retry",
            title="Conflict",
        ) from exc
    logger.info(
        "pricing_settings_saved",
        extra={"extra": {"version": config.version, "config_hash": config.config_hash}},
    )
    return config
