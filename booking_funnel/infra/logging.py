import contextvars
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict

# Order matters: keys and tokens go before the generic digit runs a phone pattern would eat.
_REDACTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(?:sk|rk|pk|whsec)_(?:live|test)_[A-Za-z0-9]+\b"), "[REDACTED_KEY]"),
    (re.compile(r"(?i)bearer\s+[A-Za-z0-9._\-]+"), "Bearer [REDACTED_TOKEN]"),
    (re.compile(r"(?i)\b(?P<key>token|signature)=[^&\s]+"), r"\g<key>=[REDACTED_TOKEN]"),
    (re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"), "[REDACTED_EMAIL]"),
    (re.compile(r"(?:\+?1[-.\s]?)?\(?\b\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b"), "[REDACTED_PHONE]"),
)
# Contact details and message content; ids and amounts stay readable.
SENSITIVE_KEYS = {
    "phone",
    "email",
    "to",
    "to_number",
    "from_number",
    "recipient",
    "body",
    "sms_body",
    "email_html",
    "feedback",
    "authorization",
    "signature",
    "token",
    "service_role_key",
}
QUIET_LOGGERS = ("httpx", "httpcore", "stripe")

LOG_CONTEXT: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar("log_context", default={})
_LOG_RECORD_ATTRS = set(logging.LogRecord(None, 0, "", 0, "", (), None).__dict__.keys())


def redact(value: str) -> str:
    for pattern, replacement in _REDACTIONS:
        value = pattern.sub(replacement, value)
    return value


def _sanitize_value(value: Any, key: str | None = None) -> Any:
    if key and key.lower() in SENSITIVE_KEYS and value is not None:
        return "[REDACTED]"
    if isinstance(value, str):
        return redact(value)
    if isinstance(value, (list, tuple)):
        return [_sanitize_value(item) for item in value]
    if isinstance(value, dict):
        return {item_key: _sanitize_value(item_value, item_key) for item_key, item_value in value.items()}
    return value


def update_log_context(**kwargs: Any) -> dict[str, Any]:
    merged = {**LOG_CONTEXT.get({}), **{key: value for key, value in kwargs.items() if value is not None}}
    LOG_CONTEXT.set(merged)
    return merged


def clear_log_context() -> None:
    LOG_CONTEXT.set({})


def _extract_extra(record: logging.LogRecord) -> dict[str, Any]:
    structured = {
        key: value
        for key, value in record.__dict__.items()
        if key not in _LOG_RECORD_ATTRS and not key.startswith("_")
    }
    extra_payload = structured.pop("extra", None)
    if isinstance(extra_payload, dict):
        structured.update(extra_payload)
    return structured


class RedactingJsonFormatter(logging.Formatter):
    """One JSON object per line: event name, request or job context, then the event's own fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "event": redact(str(record.getMessage())),
            "logger": record.name,
        }
        payload.update(_sanitize_value(LOG_CONTEXT.get({})))
        payload.update(_sanitize_value(_extract_extra(record)))
        if record.exc_info and record.exc_info[0]:
            payload["exc_type"] = record.exc_info[0].__name__
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str | int = logging.INFO) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(RedactingJsonFormatter())
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)
    # request lines from provider SDKs carry account ids and phone numbers
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
