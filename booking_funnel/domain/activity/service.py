from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from booking_funnel.domain.activity.db_models import ActivityLogEntry


def log_activity(
    session: AsyncSession,
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    details: dict[str, Any] | None = None,
    actor: str = "system",
) -> ActivityLogEntry:
    """Stage an audit entry on the session; the caller's commit persists it with the state change."""
    entry = ActivityLogEntry(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        details=details or {},
        actor=actor,
    )
    session.add(entry)
    return entry
