"""
Lead-Time Policy

Pure functions mapping an obligation type to the lead-time milestones
(days before due date) at which a reminder must fire.

- CALIBRATION: discrete milestones at 30, 7 and 1 days out. Long-range date,
  repeated daily pings would be noise.
- RENTAL / MAINTENANCE: 7-day milestone, then a trailing window re-evaluated
  every day while 0 <= days_until_due <= 3.
- SCHEDULE: day-of only.
- Anything else: no milestones, never eligible (fails closed).
"""
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Tuple

from ...models.db_models import ObligationType, resolve_obligation_type


# =============================================================================
# POLICY TABLE
# =============================================================================

@dataclass(frozen=True)
class LeadTimeRule:
    """Milestones (days before due) plus an optional inclusive day window."""
    milestones: Tuple[int, ...]
    window: Optional[Tuple[int, int]] = None

    def bucket(self, days_until_due: int) -> Optional[int]:
        """Return the day-count bucket for this distance, or None."""
        if days_until_due in self.milestones:
            return days_until_due
        if self.window is not None:
            low, high = self.window
            if low <= days_until_due <= high:
                return days_until_due
        return None


LEAD_TIME_POLICY: Dict[ObligationType, LeadTimeRule] = {
    ObligationType.CALIBRATION: LeadTimeRule(milestones=(30, 7, 1)),
    ObligationType.RENTAL: LeadTimeRule(milestones=(7,), window=(0, 3)),
    ObligationType.MAINTENANCE: LeadTimeRule(milestones=(7,), window=(0, 3)),
    ObligationType.SCHEDULE: LeadTimeRule(milestones=(0,)),
}

MILESTONE_LABELS = {
    30: "H-30",
    7: "H-7",
    1: "H-1",
    0: "H-0",
}


# =============================================================================
# POLICY FUNCTIONS
# =============================================================================

def _rule_for(reminder_type) -> Optional[LeadTimeRule]:
    obligation_type = resolve_obligation_type(reminder_type)
    if obligation_type is None:
        return None
    return LEAD_TIME_POLICY.get(obligation_type)


def milestones_for(reminder_type) -> List[int]:
    """Ordered (descending) lead-time milestones; empty for unknown types."""
    rule = _rule_for(reminder_type)
    if rule is None:
        return []
    return sorted(rule.milestones, reverse=True)


def primary_lead_days(reminder_type) -> int:
    """Largest lead time - the day a reminder first becomes eligible."""
    milestones = milestones_for(reminder_type)
    if not milestones:
        raise ValueError(f"No lead-time policy for reminder type {reminder_type!r}")
    return milestones[0]


def days_until_due(due_date: date, today: date) -> int:
    """Calendar days from today to the due date (negative when overdue)."""
    return (due_date - today).days


def milestone_bucket(reminder_type, due_date: Optional[date], today: date) -> Optional[int]:
    """
    Which day-count bucket `today` falls into for this obligation.

    Discrete types return an exact milestone; ranged types return the
    day count while inside the window. None means "not an eligible day".
    """
    rule = _rule_for(reminder_type)
    if rule is None or due_date is None:
        return None
    return rule.bucket(days_until_due(due_date, today))


def is_eligible_day(reminder_type, due_date: Optional[date], today: date) -> bool:
    """True when a reminder of this type may fire today."""
    return milestone_bucket(reminder_type, due_date, today) is not None


def milestone_label(days: int) -> str:
    """Human label for a bucket: H-30, H-7, H-1, H-0, H-3 or OVERDUE."""
    if days < 0:
        return "OVERDUE"
    return MILESTONE_LABELS.get(days, f"H-{days}")
