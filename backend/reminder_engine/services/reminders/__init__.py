"""
Reminder Scheduling Services

Lead-Time Policy → Reminder Store → Due-Reminder Sweeper → Notification Fan-out

- Lead-time policy: pure functions deciding which days a reminder may fire
- ReminderStore: idempotent creation and conditional state transitions
- DueReminderSweeper: periodic reconciliation pass, one transaction per reminder
- NotificationFanout: one logical alert to a user or every holder of a role
- RecurrenceExpander: next occurrence of recurring inventory checks
- TriggerCache: process-local toast debounce (advisory only)
"""

from .exceptions import (
    ReminderEngineError,
    ValidationError,
    ObligationNotFound,
    ReminderNotFound,
    TransientStoreError,
    RecipientResolutionError,
    RecurrenceConflict,
)
from .lead_time import (
    LEAD_TIME_POLICY,
    milestones_for,
    primary_lead_days,
    days_until_due,
    milestone_bucket,
    is_eligible_day,
    milestone_label,
)
from .store import ObligationRegistry, ReminderStore
from .fanout import NotificationFanout, RecipientDirectory, UserRecipient, RoleRecipient
from .recurrence import RecurrenceExpander, next_occurrence
from .sweeper import DueReminderSweeper, SweepReport, ReminderResult, SkipReason
from .trigger_cache import TriggerCache
from .service import ReminderService

__all__ = [
    # Errors
    'ReminderEngineError',
    'ValidationError',
    'ObligationNotFound',
    'ReminderNotFound',
    'TransientStoreError',
    'RecipientResolutionError',
    'RecurrenceConflict',
    # Lead-time policy
    'LEAD_TIME_POLICY',
    'milestones_for',
    'primary_lead_days',
    'days_until_due',
    'milestone_bucket',
    'is_eligible_day',
    'milestone_label',
    # Store
    'ObligationRegistry',
    'ReminderStore',
    # Fan-out
    'NotificationFanout',
    'RecipientDirectory',
    'UserRecipient',
    'RoleRecipient',
    # Recurrence
    'RecurrenceExpander',
    'next_occurrence',
    # Sweeper
    'DueReminderSweeper',
    'SweepReport',
    'ReminderResult',
    'SkipReason',
    # Toasts
    'TriggerCache',
    'ReminderService',
]
