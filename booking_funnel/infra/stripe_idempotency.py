from __future__ import annotations

import hashlib
import json
from typing import Any


def _stable_extra_value(value: Any) -> str:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return str(value)
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def make_stripe_idempotency_key(
    purpose: str,
    *,
    job_id: str | None = None,
    amount_cents: int | None = None,
    currency: str | None = None,
    extra: dict | None = None,
) -> str:
    """Build a deterministic idempotency key for a Stripe mutation.

    Retrying the same logical operation produces the same key, so Stripe returns
    the original object instead of creating a second session or charge.

    Format: ``<prefix8>-<sha256hex32>`` where the prefix is the start of *purpose*
    with underscores turned into hyphens.
    """
    parts: list[str] = [purpose]
    if job_id is not None:
        parts.append(f"j:{job_id}")
    if amount_cents is not None:
        parts.append(f"a:{amount_cents}")
    if currency is not None:
        parts.append(f"c:{currency.lower()}")
    if extra:
        for k in sorted(extra.keys()):
            parts.append(f"x:{k}:{_stable_extra_value(extra[k])}")

    raw = "|".join(parts)
    digest = hashlib.sha256(raw.encode()).hexdigest()[:32]
    prefix = purpose[:8].replace("_", "-").rstrip("-")
    return f"{prefix}-{digest}"
