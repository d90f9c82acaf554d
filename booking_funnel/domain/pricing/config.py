import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict

from booking_funnel.domain.pricing.models import PricingConstants

DEFAULT_CONSTANTS = PricingConstants()


@dataclass(frozen=True)
class PricingConfig:
    version: int
    config_hash: str
    constants: PricingConstants
    overrides: Dict[str, Any]


def _canonical_json(data: Dict[str, Any]) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"))


def merge_overrides(current: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    merged = {**current, **{key: value for key, value in update.items() if key != "frequency_multipliers"}}
    multipliers = update.get("frequency_multipliers")
    if multipliers:
        merged["frequency_multipliers"] = {
            **(current.get("frequency_multipliers") or {}),
            **{str(getattr(key, "value", key)): value for key, value in multipliers.items()},
        }
    return merged


def build_pricing_config(overrides: Dict[str, Any] | None = None, *, version: int = 0) -> PricingConfig:
    """Merge stored overrides over the hardcoded defaults.

    Raises ``pydantic.ValidationError`` when the merged result is not a valid
    set of constants.
    """
    overrides = dict(overrides or {})
    data = DEFAULT_CONSTANTS.model_dump(mode="json")
    data.update({key: value for key, value in overrides.items() if key != "frequency_multipliers"})
    data["frequency_multipliers"] = {
        **data["frequency_multipliers"],
        **(overrides.get("frequency_multipliers") or {}),
    }
    constants = PricingConstants.model_validate(data)
    canonical = _canonical_json(constants.model_dump(mode="json"))
    config_hash = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return PricingConfig(
        version=version,
        config_hash=f"sha256:{config_hash}",
        constants=constants,
        overrides=overrides,
    )
