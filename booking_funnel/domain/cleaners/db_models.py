from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from booking_funnel.infra.db import Base


class Cleaner(Base):
    __tablename__ = "cleaners"

    cleaner_id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(32))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    available_days: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    service_areas: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    last_assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    total_assignments: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    jobs = relationship("Job", back_populates="cleaner")

    __table_args__ = (Index("ix_cleaners_active_last_assigned", "is_active", "last_assigned_at"),)
