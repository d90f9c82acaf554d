import re


def normalize_e164(phone: str | None) -> str | None:
    """Return ``phone`` as E.164, assuming North American numbers when no country code is present."""
    digits = re.sub(r"\D", "", phone or "")
    if not digits:
        return None
    if len(digits) == 10:
        return f"+1{digits}"
    return f"+{digits}"
