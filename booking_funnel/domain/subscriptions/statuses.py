ACTIVE = "active"
PAUSED = "paused"
CANCELLED = "cancelled"

STATUSES = {ACTIVE, PAUSED, CANCELLED}

WEEKLY = "weekly"
BIWEEKLY = "biweekly"
MONTHLY = "monthly"

FREQUENCIES = {WEEKLY, BIWEEKLY, MONTHLY}

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def normalize_frequency(value: str) -> str:
    lower = value.lower()
    if lower not in FREQUENCIES:
        raise ValueError("Invalid subscription frequency")
    return lower


def normalize_weekday(value: str) -> str:
    lower = value.strip().lower()
    if lower not in WEEKDAYS:
        raise ValueError("Invalid weekday")
    return lower
