"""initial

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-19 00:00:00
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "customers",
        sa.Column("customer_id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("phone", sa.String(length=32)),
        sa.Column("address", sa.String(length=255)),
        sa.Column("city", sa.String(length=100)),
        sa.Column("sqft", sa.Integer()),
        sa.Column("bedrooms", sa.Integer()),
        sa.Column("bathrooms", sa.Float()),
        sa.Column("stripe_customer_id", sa.String(length=255)),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("sms_opted_out", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("google_review_requested", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("google_review_sent_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_customers_phone", "customers", ["phone"])
    op.create_index("ix_customers_stripe_customer_id", "customers", ["stripe_customer_id"])

    op.create_table(
        "customer_notes",
        sa.Column("note_id", sa.String(length=36), primary_key=True),
        sa.Column("customer_id", sa.String(length=36), sa.ForeignKey("customers.customer_id"), nullable=False),
        sa.Column("note_type", sa.String(length=32), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_customer_notes_customer_id", "customer_notes", ["customer_id"])

    op.create_table(
        "cleaners",
        sa.Column("cleaner_id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255)),
        sa.Column("phone", sa.String(length=32)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("available_days", sa.JSON(), nullable=False),
        sa.Column("service_areas", sa.JSON(), nullable=False),
        sa.Column("last_assigned_at", sa.DateTime(timezone=True)),
        sa.Column("total_assignments", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_cleaners_active_last_assigned", "cleaners", ["is_active", "last_assigned_at"])

    op.create_table(
        "subscriptions",
        sa.Column("subscription_id", sa.String(length=36), primary_key=True),
        sa.Column("customer_id", sa.String(length=36), sa.ForeignKey("customers.customer_id"), nullable=False),
        sa.Column("frequency", sa.String(length=16), nullable=False),
        sa.Column("preferred_day", sa.String(length=16), nullable=False),
        sa.Column("preferred_time", sa.String(length=16), nullable=False),
        sa.Column("base_price_cents", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_subscriptions_customer_id", "subscriptions", ["customer_id"])
    op.create_index("ix_subscriptions_customer_status", "subscriptions", ["customer_id", "status"])

    op.create_table(
        "jobs",
        sa.Column("job_id", sa.String(length=36), primary_key=True),
        sa.Column("customer_id", sa.String(length=36), sa.ForeignKey("customers.customer_id"), nullable=False),
        sa.Column(
            "subscription_id",
            sa.String(length=36),
            sa.ForeignKey("subscriptions.subscription_id", ondelete="CASCADE"),
        ),
        sa.Column("cleaner_id", sa.String(length=36), sa.ForeignKey("cleaners.cleaner_id")),
        sa.Column("sqft", sa.Integer()),
        sa.Column("bedrooms", sa.Integer()),
        sa.Column("bathrooms", sa.Float()),
        sa.Column("frequency", sa.String(length=16), nullable=False),
        sa.Column("address", sa.String(length=255)),
        sa.Column("city", sa.String(length=100)),
        sa.Column("scheduled_date", sa.Date()),
        sa.Column("time_slot", sa.String(length=16)),
        sa.Column("duration_minutes", sa.Integer()),
        sa.Column("first_clean_price_cents", sa.Integer()),
        sa.Column("recurring_price_cents", sa.Integer()),
        sa.Column("total_price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deposit_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("remaining_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("payment_status", sa.String(length=32), nullable=False),
        sa.Column("charge_error", sa.String(length=500)),
        sa.Column("stripe_checkout_session_id", sa.String(length=255)),
        sa.Column("stripe_customer_id", sa.String(length=255)),
        sa.Column("stripe_payment_intent_id", sa.String(length=255)),
        sa.Column("remaining_payment_intent_id", sa.String(length=255)),
        sa.Column("deposit_paid_at", sa.DateTime(timezone=True)),
        sa.Column("remaining_paid_at", sa.DateTime(timezone=True)),
        sa.Column("cleaning_instructions", sa.Text()),
        sa.Column("cleaner_notified_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("customer_rating", sa.Integer()),
        sa.Column("customer_feedback", sa.Text()),
        sa.Column("feedback_submitted_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_jobs_customer_id", "jobs", ["customer_id"])
    op.create_index("ix_jobs_subscription_id", "jobs", ["subscription_id"])
    op.create_index("ix_jobs_cleaner_id", "jobs", ["cleaner_id"])
    op.create_index("ix_jobs_scheduled_date_status", "jobs", ["scheduled_date", "status"])
    op.create_index("ix_jobs_customer_scheduled_date", "jobs", ["customer_id", "scheduled_date"])

    op.create_table(
        "payments",
        sa.Column("payment_id", sa.String(length=36), primary_key=True),
        sa.Column("job_id", sa.String(length=36), sa.ForeignKey("jobs.job_id"), nullable=False),
        sa.Column("customer_id", sa.String(length=36), sa.ForeignKey("customers.customer_id"), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("payment_type", sa.String(length=32), nullable=False),
        sa.Column("stripe_payment_intent_id", sa.String(length=255), unique=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_payments_job_id", "payments", ["job_id"])
    op.create_index("ix_payments_customer_id", "payments", ["customer_id"])

    op.create_table(
        "stripe_events",
        sa.Column("event_id", sa.String(length=255), primary_key=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("payload_hash", sa.String(length=128), nullable=False),
        sa.Column("event_type", sa.String(length=128)),
        sa.Column("job_id", sa.String(length=36)),
        sa.Column("last_error", sa.Text()),
        sa.Column("processed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_stripe_events_job_id", "stripe_events", ["job_id"])

    op.create_table(
        "communication_log",
        sa.Column("log_id", sa.String(length=36), primary_key=True),
        sa.Column("channel", sa.String(length=16), nullable=False),
        sa.Column("template", sa.String(length=64), nullable=False),
        sa.Column("recipient_type", sa.String(length=16), nullable=False),
        sa.Column("recipient_id", sa.String(length=36)),
        sa.Column("recipient_contact", sa.String(length=255)),
        sa.Column("content", sa.Text()),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("external_id", sa.String(length=255)),
        sa.Column("error_message", sa.String(length=500)),
        sa.Column("related_entity_type", sa.String(length=32)),
        sa.Column("related_entity_id", sa.String(length=36)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_communication_log_recipient", "communication_log", ["recipient_type", "recipient_id"])
    op.create_index("ix_communication_log_related", "communication_log", ["related_entity_type", "related_entity_id"])

    op.create_table(
        "activity_log",
        sa.Column("activity_id", sa.String(length=36), primary_key=True),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("actor", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_activity_log_entity", "activity_log", ["entity_type", "entity_id"])

    op.create_table(
        "outbox_events",
        sa.Column("event_id", sa.String(length=36), primary_key=True),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=False),
        sa.Column("dedupe_key", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True)),
        sa.Column("last_error", sa.String(length=255)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_outbox_status_next_attempt", "outbox_events", ["status", "next_attempt_at"])
    op.create_index("ix_outbox_dedupe", "outbox_events", ["dedupe_key"], unique=True)

    op.create_table(
        "pricing_settings",
        sa.Column("version", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("overrides", sa.JSON(), nullable=False),
        sa.Column("config_hash", sa.String(length=128), nullable=False),
        sa.Column("created_by", sa.String(length=100)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("pricing_settings")
    op.drop_index("ix_outbox_dedupe", table_name="outbox_events")
    op.drop_index("ix_outbox_status_next_attempt", table_name="outbox_events")
    op.drop_table("outbox_events")
    op.drop_index("ix_activity_log_entity", table_name="activity_log")
    op.drop_table("activity_log")
    op.drop_index("ix_communication_log_related", table_name="communication_log")
    op.drop_index("ix_communication_log_recipient", table_name="communication_log")
    op.drop_table("communication_log")
    op.drop_index("ix_stripe_events_job_id", table_name="stripe_events")
    op.drop_table("stripe_events")
    op.drop_table("payments")
    op.drop_table("jobs")
    op.drop_table("subscriptions")
    op.drop_index("ix_cleaners_active_last_assigned", table_name="cleaners")
    op.drop_table("cleaners")
    op.drop_table("customer_notes")
    op.drop_index("ix_customers_stripe_customer_id", table_name="customers")
    op.drop_index("ix_customers_phone", table_name="customers")
    op.drop_table("customers")
