from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from booking_funnel.domain.subscriptions import statuses
from booking_funnel.infra.db import Base


class Subscription(Base):
    __tablename__ = "subscriptions"

    subscription_id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    customer_id: Mapped[str] = mapped_column(
        ForeignKey("customers.customer_id"), nullable=False, index=True
    )
    frequency: Mapped[str] = mapped_column(String(16), nullable=False)
    preferred_day: Mapped[str] = mapped_column(String(16), nullable=False)
    preferred_time: Mapped[str] = mapped_column(String(16), nullable=False)
    base_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=statuses.ACTIVE)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    customer = relationship("Customer")
    jobs = relationship("Job", back_populates="subscription", passive_deletes=True)

    __table_args__ = (Index("ix_subscriptions_customer_status", "customer_id", "status"),)
