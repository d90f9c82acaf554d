import json
import logging
import sys

from booking_funnel.infra.logging import (
    RedactingJsonFormatter,
    clear_log_context,
    configure_logging,
    redact,
    update_log_context,
)


def _format(message: str, *, exc_info=None, **extra) -> dict:
    record = logging.LogRecord("booking_funnel.test", logging.INFO, __file__, 1, message, (), exc_info)
    if extra:
        record.extra = extra
    return json.loads(RedactingJsonFormatter().format(record))


def test_redact_masks_contact_details_and_secrets():
    text = redact(
        "sent to jane@example.com at (630) 555-0101 with sk_live_abc123 "
        "Bearer eyJhbGciOi.abc /metrics?token=s3cret"
    )

    assert "jane@example.com" not in text
    assert "555-0101" not in text
    assert "sk_live_abc123" not in text
    assert "eyJhbGciOi" not in text
    assert "s3cret" not in text
    assert "[REDACTED_EMAIL]" in text
    assert "[REDACTED_PHONE]" in text
    assert "token=[REDACTED_TOKEN]" in text


def test_formatter_redacts_sensitive_extra_fields():
    payload = _format(
        "sms_send_skipped",
        job_id="job-1",
        phone="+16305550101",
        sms_body="See you tomorrow",
        nested={"email": "jane@example.com", "amount_cents": 23200},
    )

    assert payload["event"] == "sms_send_skipped"
    assert payload["job_id"] == "job-1"
    assert payload["phone"] == "[REDACTED]"
    assert payload["sms_body"] == "[REDACTED]"
    assert payload["nested"] == {"email": "[REDACTED]", "amount_cents": 23200}


def test_formatter_includes_log_context_until_cleared():
    update_log_context(request_id="req-1", job_id="job-9", ignored=None)
    try:
        payload = _format("balance_charged")
    finally:
        clear_log_context()

    assert payload["request_id"] == "req-1"
    assert payload["job_id"] == "job-9"
    assert "ignored" not in payload
    assert "request_id" not in _format("balance_charged")


def test_formatter_reports_exception_type_only():
    try:
        raise RuntimeError("card 4242 for jane@example.com")
    except RuntimeError:
        payload = _format("balance_charge_error", exc_info=sys.exc_info())

    assert payload["exc_type"] == "RuntimeError"
    assert "jane@example.com" not in json.dumps(payload)


def test_configure_logging_installs_json_handler_and_quiets_http_clients():
    root = logging.getLogger()
    previous_handlers, previous_level = root.handlers[:], root.level
    try:
        configure_logging()

        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, RedactingJsonFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        root.handlers[:] = previous_handlers
        root.setLevel(previous_level)
