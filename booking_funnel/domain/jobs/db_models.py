from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from booking_funnel.domain.jobs import statuses
from booking_funnel.infra.db import Base


class Job(Base):
    __tablename__ = "jobs"

    job_id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    customer_id: Mapped[str] = mapped_column(
        ForeignKey("customers.customer_id"), nullable=False, index=True
    )
    subscription_id: Mapped[str | None] = mapped_column(
        ForeignKey("subscriptions.subscription_id", ondelete="CASCADE"), index=True
    )
    cleaner_id: Mapped[str | None] = mapped_column(ForeignKey("cleaners.cleaner_id"), index=True)
    sqft: Mapped[int | None] = mapped_column(Integer)
    bedrooms: Mapped[int | None] = mapped_column(Integer)
    bathrooms: Mapped[float | None] = mapped_column(Float)
    frequency: Mapped[str] = mapped_column(String(16), nullable=False, default="onetime")
    address: Mapped[str | None] = mapped_column(String(255))
    city: Mapped[str | None] = mapped_column(String(100))
    scheduled_date: Mapped[date | None] = mapped_column(Date)
    time_slot: Mapped[str | None] = mapped_column(String(16))
    duration_minutes: Mapped[int | None] = mapped_column(Integer)
    first_clean_price_cents: Mapped[int | None] = mapped_column(Integer)
    recurring_price_cents: Mapped[int | None] = mapped_column(Integer)
    total_price_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deposit_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    remaining_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=statuses.LEAD)
    payment_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=statuses.PAYMENT_PENDING
    )
    charge_error: Mapped[str | None] = mapped_column(String(500))
    stripe_checkout_session_id: Mapped[str | None] = mapped_column(String(255))
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255))
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(255))
    remaining_payment_intent_id: Mapped[str | None] = mapped_column(String(255))
    deposit_paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    remaining_paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cleaning_instructions: Mapped[str | None] = mapped_column(Text())
    cleaner_notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    customer_rating: Mapped[int | None] = mapped_column(Integer)
    customer_feedback: Mapped[str | None] = mapped_column(Text())
    feedback_submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    customer = relationship("Customer", back_populates="jobs")
    cleaner = relationship("Cleaner", back_populates="jobs")
    subscription = relationship("Subscription", back_populates="jobs")

    __table_args__ = (
        Index("ix_jobs_scheduled_date_status", "scheduled_date", "status"),
        Index("ix_jobs_customer_scheduled_date", "customer_id", "scheduled_date"),
    )


class Payment(Base):
    __tablename__ = "payments"

    payment_id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    job_id: Mapped[str] = mapped_column(ForeignKey("jobs.job_id"), nullable=False, index=True)
    customer_id: Mapped[str] = mapped_column(
        ForeignKey("customers.customer_id"), nullable=False, index=True
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_type: Mapped[str] = mapped_column(String(32), nullable=False)
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(255), unique=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
