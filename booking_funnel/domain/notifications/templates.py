from __future__ import annotations

import html
from dataclasses import dataclass
from datetime import date

from booking_funnel.domain.jobs.statuses import time_slot_label
from booking_funnel.settings import settings

BOOKING_CONFIRMED = "booking_confirmed"
CLEANER_ASSIGNMENT = "cleaner_assignment"
REMAINING_CHARGED = "remaining_charged"
CHARGE_FAILED = "charge_failed"
RECURRING_SETUP = "recurring_setup"
JOB_COMPLETE = "job_complete"
DAY_BEFORE_REMINDER = "day_before_reminder"
GOOGLE_REVIEW_REQUEST = "google_review_request"
LOW_RATING_RESPONSE = "low_rating_response"
COMPLAINT_ESCALATION = "complaint_escalation"
WEEKLY_SCHEDULE = "weekly_schedule"
CLEANER_DAY_BEFORE = "cleaner_day_before"
CLEANER_MORNING_OF = "cleaner_morning_of"
INBOUND = "inbound"

GOOGLE_REVIEW_URL = "https://g.page/r/willowandwater/review"


@dataclass(frozen=True)
class RenderedMessage:
    sms_body: str | None = None
    email_subject: str | None = None
    email_html: str | None = None


def first_name(name: str | None) -> str:
    if not name:
        return "there"
    return name.split()[0]


def format_date(value: date | None) -> str:
    if value is None:
        return "TBD"
    return f"{value:%A, %B} {value.day}"


def format_money(cents: int) -> str:
    return f"${cents / 100:,.2f}"


def _email_shell(title: str, body_html: str) -> str:
    name = html.escape(settings.business_name)
    phone = html.escape(settings.business_phone)
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{html.escape(title)}</title></head>"
        "<body style=\"font-family: 'Segoe UI', Tahoma, sans-serif; background-color: #F9F6EE;\">"
        f"<div style=\"max-width: 600px; margin: 0 auto; padding: 24px; background: #fff;\">"
        f"<h1 style=\"color: #71797E;\">{name}</h1>"
        f"{body_html}"
        f"<p style=\"font-size: 12px; opacity: 0.6;\">Questions? Call us at {phone}.</p>"
        "</div></body></html>"
    )


def _rows(items: list[tuple[str, str]]) -> str:
    cells = "".join(
        f"<tr><td>{html.escape(label)}</td><td style=\"text-align: right;\">{html.escape(value)}</td></tr>"
        for label, value in items
    )
    return f"<table width=\"100%\">{cells}</table>"


def booking_confirmed(
    *,
    customer_name: str | None,
    scheduled_date: date | None,
    time_slot: str | None,
    address: str | None,
    total_cents: int,
    deposit_cents: int,
    remaining_cents: int,
) -> RenderedMessage:
    name = first_name(customer_name)
    when = format_date(scheduled_date)
    slot = time_slot_label(time_slot)
    sms = (
        f"Hi {name}! Your {settings.business_name} cleaning is confirmed for {when} ({slot}). "
        f"We'll text you when your cleaner is on the way! Address on file: {address or 'TBD'}"
    )
    body = (
        f"<h2>Hi {html.escape(name)}!</h2>"
        "<p>Your cleaning has been scheduled.</p>"
        + _rows([("Date", when), ("Time", slot), ("Address", address or "TBD")])
        + _rows(
            [
                ("Total", format_money(total_cents)),
                ("Deposit paid", format_money(deposit_cents)),
                ("Due on cleaning day", format_money(remaining_cents)),
            ]
        )
        + "<p>The remaining balance will be charged the morning of your cleaning.</p>"
    )
    return RenderedMessage(
        sms_body=sms,
        email_subject=f"Your {settings.business_name} Cleaning is Confirmed!",
        email_html=_email_shell("Booking Confirmed", body),
    )


def cleaner_assignment(
    *,
    cleaner_name: str,
    customer_name: str | None,
    scheduled_date: date | None,
    time_slot: str | None,
    address: str | None,
    instructions: str,
) -> RenderedMessage:
    when = format_date(scheduled_date)
    slot = time_slot_label(time_slot)
    body = (
        f"<h2>Hi {html.escape(first_name(cleaner_name))},</h2>"
        "<p>You have a new cleaning assignment.</p>"
        + _rows([("Customer", customer_name or "Customer"), ("Date", when), ("Time", slot), ("Address", address or "TBD")])
        + f"<pre style=\"white-space: pre-wrap;\">{html.escape(instructions)}</pre>"
    )
    return RenderedMessage(
        email_subject=f"New Cleaning Assignment: {when}",
        email_html=_email_shell("New Assignment", body),
    )


def remaining_charged(*, customer_name: str | None, amount_cents: int) -> RenderedMessage:
    return RenderedMessage(
        sms_body=(
            f"Hi {first_name(customer_name)}! Your cleaning is today! We've charged the remaining "
            f"{format_money(amount_cents)} to your card on file. Your cleaner will arrive during your scheduled window."
        )
    )


def charge_failed(*, customer_name: str | None, amount_cents: int) -> RenderedMessage:
    return RenderedMessage(
        sms_body=(
            f"Hi {first_name(customer_name)}, we couldn't process your payment of {format_money(amount_cents)} "
            "for today's cleaning. Please update your card or reply to reschedule. "
            f"Call us at {settings.business_phone} if you need help."
        )
    )


def recurring_setup(
    *,
    customer_name: str | None,
    frequency: str,
    preferred_day: str,
    time_slot: str | None,
    first_date: date | None,
    jobs_created: int,
) -> RenderedMessage:
    name = first_name(customer_name)
    day = preferred_day.capitalize()
    slot = time_slot_label(time_slot)
    sms = (
        f"Hi {name}! Your {frequency} {settings.business_name} cleanings are set for {day}s ({slot}). "
        f"First visit: {format_date(first_date)}."
    )
    body = (
        f"<h2>Hi {html.escape(name)}!</h2>"
        f"<p>Your recurring service is set up. We scheduled {jobs_created} upcoming cleanings.</p>"
        + _rows([("Frequency", frequency), ("Day", day), ("Time", slot), ("First visit", format_date(first_date))])
    )
    return RenderedMessage(
        sms_body=sms,
        email_subject="Your Recurring Cleaning is Set Up",
        email_html=_email_shell("Recurring Service", body),
    )


def job_complete(
    *,
    customer_name: str | None,
    cleaner_name: str | None,
    scheduled_date: date | None,
    feedback_url: str,
) -> RenderedMessage:
    name = first_name(customer_name)
    sms = (
        f"Hi {name}! Your home is sparkling clean! We hope you love it. "
        "We'd really appreciate your feedback - reply with a rating 1-5."
    )
    body = (
        f"<p>Hi {html.escape(name)},</p>"
        f"<p>{html.escape(cleaner_name or 'Your cleaner')} has completed your cleaning on "
        f"{html.escape(format_date(scheduled_date))}.</p>"
        f"<p><a href=\"{html.escape(feedback_url, quote=True)}\">Rate Your Clean</a></p>"
    )
    return RenderedMessage(
        sms_body=sms,
        email_subject="Your Home is Sparkling Clean!",
        email_html=_email_shell("Job Complete", body),
    )


def day_before_reminder(
    *, customer_name: str | None, scheduled_date: date | None, time_slot: str | None
) -> RenderedMessage:
    return RenderedMessage(
        sms_body=(
            f"Hi {first_name(customer_name)}! Quick reminder: Your {settings.business_name} cleaning is tomorrow, "
            f"{format_date(scheduled_date)} ({time_slot_label(time_slot)}). "
            "We'll text when your cleaner is on the way. Reply STOP to unsubscribe."
        )
    )


def google_review_request(*, customer_name: str | None) -> RenderedMessage:
    return RenderedMessage(
        sms_body=(
            f"Thank you so much {first_name(customer_name)}! We're thrilled you loved your cleaning! "
            f"If you have a moment, a Google review would mean the world to us: {GOOGLE_REVIEW_URL}"
        )
    )


def low_rating_response(*, customer_name: str | None) -> RenderedMessage:
    return RenderedMessage(
        sms_body=(
            f"Hi {first_name(customer_name)}, we're sorry your cleaning didn't meet expectations. "
            "Your feedback is important to us. A manager will reach out shortly to make this right."
        )
    )


def complaint_escalation(
    *,
    customer_name: str | None,
    customer_phone: str | None,
    job_id: str,
    rating: int,
    feedback: str | None,
) -> RenderedMessage:
    body = (
        "<h2>Low rating received</h2>"
        + _rows(
            [
                ("Customer", customer_name or "Unknown"),
                ("Phone", customer_phone or "n/a"),
                ("Job", job_id),
                ("Rating", f"{rating}/5"),
            ]
        )
        + f"<p>{html.escape(feedback or 'No written feedback.')}</p>"
    )
    return RenderedMessage(
        email_subject=f"Low rating ({rating}/5) from {customer_name or 'a customer'}",
        email_html=_email_shell("Complaint Escalation", body),
    )


def weekly_schedule(
    *, cleaner_name: str, week_start: date, week_end: date, jobs: list[dict[str, str]]
) -> RenderedMessage:
    items = "".join(
        "<li>"
        f"{html.escape(job['date'])} ({html.escape(job['time'])}): "
        f"{html.escape(job['customer'])}, {html.escape(job['address'])}"
        "</li>"
        for job in jobs
    )
    body = (
        f"<h2>Hi {html.escape(first_name(cleaner_name))},</h2>"
        f"<p>You have {len(jobs)} cleaning{'s' if len(jobs) != 1 else ''} next week.</p>"
        f"<ul>{items}</ul>"
    )
    return RenderedMessage(
        email_subject=f"Your Schedule for {week_start:%b} {week_start.day} - {week_end:%b} {week_end.day}",
        email_html=_email_shell("Weekly Schedule", body),
    )


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def cleaner_day_before(
    *, cleaner_name: str, scheduled_date: date, jobs: list[dict[str, str]]
) -> RenderedMessage:
    """Tomorrow's stops as a short SMS list plus an email with customer phones."""
    when = format_date(scheduled_date)
    lines = "\n".join(f"- {job['time']}: {job['customer']} - {job['address']}" for job in jobs)
    sms = (
        f"Hi {first_name(cleaner_name)}! Reminder: You have {_plural(len(jobs), 'cleaning')} "
        f"tomorrow ({when}).\n\n{lines}"
    )
    cards = "".join(
        "<div style=\"background: #F9F6EE; border-radius: 12px; padding: 16px; margin-bottom: 12px;\">"
        f"<strong>{html.escape(job['customer'])}</strong> ({html.escape(job['time'])})"
        f"<p>{html.escape(job['address'])}</p>"
        f"<p>Phone: {html.escape(job.get('phone') or 'n/a')}</p>"
        "</div>"
        for job in jobs
    )
    body = (
        f"<h2>Hi {html.escape(first_name(cleaner_name))}!</h2>"
        f"<p>Here's your schedule for <strong>{html.escape(when)}</strong>. "
        f"You have {_plural(len(jobs), 'cleaning')} scheduled.</p>"
        f"{cards}"
    )
    return RenderedMessage(
        sms_body=sms,
        email_subject=f"Tomorrow's Schedule: {_plural(len(jobs), 'Cleaning')}",
        email_html=_email_shell("Tomorrow's Schedule", body),
    )


def cleaner_morning_of(*, cleaner_name: str, jobs: list[dict[str, str]]) -> RenderedMessage:
    first = jobs[0]
    name = first_name(cleaner_name)
    if len(jobs) == 1:
        sms = (
            f"Good morning {name}! Your cleaning today is {first['time']} - {first['customer']}, "
            f"{first['address']}. Customer phone: {first.get('phone') or 'N/A'}."
        )
    else:
        sms = (
            f"Good morning {name}! You have {len(jobs)} cleanings today starting {first['time']}. "
            f"First stop: {first['customer']}, {first['address']}. Check your email for full details."
        )
    return RenderedMessage(sms_body=sms)


def sms_unsubscribed_reply() -> str:
    return f"You have been unsubscribed from {settings.business_name} messages. Reply START to resubscribe."


def sms_resubscribed_reply() -> str:
    return f"Welcome back! You are now subscribed to {settings.business_name} messages."


def sms_rating_reply(rating: int) -> str:
    if rating >= 4:
        return f"Thank you for the {rating}-star rating! We're so glad you loved your cleaning!"
    return (
        "Thank you for your feedback. We're sorry we didn't meet your expectations. "
        "A manager will reach out shortly."
    )


def sms_rating_without_job_reply() -> str:
    return "Thank you for your rating! We appreciate your feedback."


def sms_unknown_sender_reply() -> str:
    return (
        f"Thanks for your message! If you're a {settings.business_name} customer and need help, "
        f"please call us at {settings.business_phone}."
    )


def sms_generic_reply() -> str:
    return f"Thanks for your message! For assistance, please call us at {settings.business_phone}."
