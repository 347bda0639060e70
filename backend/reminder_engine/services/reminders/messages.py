"""
Reminder message templates.

In-app notification text per milestone, the reminder's own summary text,
and the formal email body used when an email delivery is attempted.
"""
from typing import Dict, Optional, Tuple

from ...models.db_models import ObligationDB, ObligationType, resolve_obligation_type
from .lead_time import milestone_label


TYPE_LABELS = {
    ObligationType.CALIBRATION: "Calibration",
    ObligationType.RENTAL: "Rental",
    ObligationType.MAINTENANCE: "Maintenance",
    ObligationType.SCHEDULE: "Inventory Check",
}

ACTION_TEXT = {
    ObligationType.CALIBRATION: "Contact the customer to schedule recalibration.",
    ObligationType.RENTAL: "Contact the customer about returning the rental.",
    ObligationType.MAINTENANCE: "Carry out the scheduled maintenance check.",
    ObligationType.SCHEDULE: "Perform the inventory check as scheduled.",
}


def _type_label(reminder_type) -> str:
    obligation_type = resolve_obligation_type(reminder_type)
    return TYPE_LABELS.get(obligation_type, str(reminder_type))


def _item_info(obligation: ObligationDB) -> str:
    name = obligation.item_name or obligation.title or "Equipment"
    if obligation.serial_number:
        return f"{name} ({obligation.serial_number})"
    return name


def reminder_summary(obligation: ObligationDB) -> Tuple[str, str]:
    """Title and message stored on the reminder itself at creation."""
    label = _type_label(obligation.kind)
    name = obligation.item_name or obligation.title or "Equipment"
    due = f"{obligation.due_date:%d %b %Y}" if obligation.due_date else "an unscheduled date"
    customer = f" for {obligation.customer_name}" if obligation.customer_name else ""

    title = f"{label} due: {name}"
    message = f"{label} of {_item_info(obligation)}{customer} is due on {due}."
    return title, message


def milestone_message(obligation: ObligationDB, days_remaining: int) -> Tuple[str, str]:
    """In-app notification title/message for the bucket being delivered."""
    label = _type_label(obligation.kind)
    name = obligation.item_name or obligation.title or "Equipment"
    item_info = _item_info(obligation)
    customer = f" for {obligation.customer_name}" if obligation.customer_name else ""
    action = ACTION_TEXT.get(resolve_obligation_type(obligation.kind), "")
    milestone = milestone_label(days_remaining)

    if milestone == "OVERDUE":
        overdue = abs(days_remaining)
        title = f"{label}: {name} - {overdue} day(s) overdue"
        message = f"{item_info}{customer} is {overdue} day(s) overdue. Follow up immediately. {action}"
    elif days_remaining == 0:
        title = f"{label}: {name} - due today"
        message = f"{item_info}{customer} is due today. {action}"
    elif days_remaining == 1:
        title = f"{label}: {name} - due tomorrow"
        message = f"{item_info}{customer} is due tomorrow. {action}"
    else:
        title = f"{label}: {name} - {days_remaining} days left"
        message = f"{item_info}{customer} is due in {days_remaining} days. {action}"

    return title, message.strip()


def email_template(obligation: ObligationDB, days_remaining: Optional[int] = None) -> Dict[str, str]:
    """Formal email subject/body for a reminder."""
    label = _type_label(obligation.kind)
    item_info = _item_info(obligation)
    addressee = obligation.customer_name or "Sir/Madam"
    due = f"{obligation.due_date:%A, %d %B %Y}" if obligation.due_date else "a date to be confirmed"

    if days_remaining is not None and days_remaining <= 0:
        subject = f"Notice: {label} Due Today - {item_info}"
        lead = f"This is to inform you that the {label.lower()} of {item_info} is due today, {due}."
    else:
        subject = f"Reminder: Upcoming {label} - {item_info}"
        lead = f"This is a reminder that the {label.lower()} of {item_info} is due on {due}."

    body = (
        f"Dear {addressee},\n\n"
        f"{lead}\n\n"
        f"{ACTION_TEXT.get(resolve_obligation_type(obligation.kind), '')}\n\n"
        f"Please contact us to arrange the necessary follow-up.\n\n"
        f"Equipment Tracker"
    )

    return {"subject": subject, "body": body}
