LEAD = "lead"
PAYMENT_INITIATED = "payment_initiated"
SCHEDULED = "scheduled"
CONFIRMED = "confirmed"
COMPLETED = "completed"
CHARGE_FAILED = "charge_failed"
CANCELLED = "cancelled"

STATUSES = {LEAD, PAYMENT_INITIATED, SCHEDULED, CONFIRMED, COMPLETED, CHARGE_FAILED, CANCELLED}
TERMINAL_STATUSES = {COMPLETED, CANCELLED}
BOOKED_STATUSES = {SCHEDULED, CONFIRMED}

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    LEAD: {PAYMENT_INITIATED, CONFIRMED, CANCELLED},
    PAYMENT_INITIATED: {CONFIRMED, CANCELLED},
    SCHEDULED: {CONFIRMED, COMPLETED, CHARGE_FAILED, CANCELLED},
    CONFIRMED: {COMPLETED, CHARGE_FAILED, CANCELLED},
    CHARGE_FAILED: {CONFIRMED, COMPLETED, CANCELLED},
    COMPLETED: set(),
    CANCELLED: set(),
}

PAYMENT_PENDING = "pending"
PAYMENT_DEPOSIT_PAID = "deposit_paid"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"

PAYMENT_STATUSES = {PAYMENT_PENDING, PAYMENT_DEPOSIT_PAID, PAYMENT_PAID, PAYMENT_FAILED}
CHARGEABLE_PAYMENT_STATUSES = {PAYMENT_DEPOSIT_PAID, PAYMENT_PENDING}

MORNING = "morning"
AFTERNOON = "afternoon"
TIME_SLOTS = {MORNING, AFTERNOON}
TIME_SLOT_LABELS = {MORNING: "9am-12pm", AFTERNOON: "1pm-5pm"}


def can_transition(current: str, target: str) -> bool:
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS.get(current, set())


def time_slot_label(value: str | None) -> str:
    if not value:
        return "TBD"
    return TIME_SLOT_LABELS.get(value, value)
