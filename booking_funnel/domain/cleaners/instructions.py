from booking_funnel.domain.jobs.db_models import Job
from booking_funnel.domain.jobs.statuses import time_slot_label
from booking_funnel.domain.notifications.templates import format_date


def _spec_line(job: Job) -> str:
    parts = []
    if job.sqft:
        parts.append(f"{job.sqft} sq ft")
    if job.bedrooms is not None:
        parts.append(f"{job.bedrooms} bed")
    if job.bathrooms is not None:
        parts.append(f"{job.bathrooms:g} bath")
    return ", ".join(parts) or "Not provided"


def build_cleaning_instructions(job: Job, *, customer_name: str | None, customer_phone: str | None) -> str:
    """Markdown job sheet stored on the job and mailed to the assigned cleaner."""
    lines = [
        "# Cleaning Instructions",
        "",
        f"**Date:** {format_date(job.scheduled_date)}",
        f"**Time:** {time_slot_label(job.time_slot)}",
        f"**Duration:** {job.duration_minutes or 'TBD'} minutes",
        "",
        "## Customer",
        f"- Name: {customer_name or 'Unknown'}",
        f"- Phone: {customer_phone or 'Not provided'}",
        f"- Address: {job.address or 'TBD'}{', ' + job.city if job.city else ''}",
        "",
        "## Home",
        f"- {_spec_line(job)}",
        f"- Service: {job.frequency}",
        "",
        "## Checklist",
        "- Kitchen: counters, sink, stovetop, appliance fronts, floors",
        "- Bathrooms: toilet, shower/tub, sink, mirrors, floors",
        "- Bedrooms and living areas: dust surfaces, vacuum, mop hard floors",
        "- Empty trash and replace liners",
        "",
        "Use only the plant-based products from the kit. Text the office when you arrive and when you finish.",
    ]
    return "\n".join(lines)
