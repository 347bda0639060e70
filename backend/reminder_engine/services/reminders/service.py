"""
Reminder Service

Orchestration layer used by the API routers. Wraps the store, the
recurrence expander and the message templates so that each user-facing
operation is one call with clear transaction boundaries.
"""
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from ...models.db_models import (
    ObligationDB, ReminderDB, ReminderStatus, ObligationType, resolve_obligation_type,
)
from .exceptions import ValidationError
from .lead_time import days_until_due
from .messages import email_template
from .recurrence import RecurrenceExpander
from .store import ObligationRegistry, ReminderStore


logger = logging.getLogger(__name__)


class ReminderService:
    """
    Service for reminder lifecycle operations.

    Usage:
        service = ReminderService(db)
        reminder, created = service.create_reminder(obligation_id, ObligationType.RENTAL)
        reminder, changed, next_reminder = service.acknowledge(reminder.id)
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = datetime.utcnow):
        self.db = db
        self.clock = clock
        self.store = ReminderStore(db, clock=clock)
        self.obligations = ObligationRegistry(db)
        self.expander = RecurrenceExpander(db, store=self.store)

    # =========================================================================
    # CREATE / READ
    # =========================================================================

    def create_reminder(self, obligation_id: str, reminder_type) -> Tuple[ReminderDB, bool]:
        obligation_type = resolve_obligation_type(reminder_type)
        if obligation_type is None:
            raise ValidationError(f"Unknown reminder type {reminder_type!r}")
        return self.store.create_reminder(obligation_id, obligation_type)

    def get_reminder(self, reminder_id: str) -> ReminderDB:
        return self.store.get_reminder(reminder_id)

    def list_reminders(
        self,
        reminder_type: Optional[ObligationType] = None,
        status: Optional[ReminderStatus] = None,
        user_id: Optional[str] = None,
    ) -> List[ReminderDB]:
        return self.store.list_reminders(reminder_type=reminder_type, status=status, user_id=user_id)

    # =========================================================================
    # ACKNOWLEDGE (+ RECURRENCE)
    # =========================================================================

    def acknowledge(self, reminder_id: str) -> Tuple[ReminderDB, bool, Optional[ReminderDB]]:
        """
        Acknowledge a reminder. Returns (reminder, changed, next_reminder).

        For recurring inventory schedules the next occurrence is expanded in
        its own transaction after the acknowledgement commits. Expansion is
        attempted on every acknowledge call, including retries of an already
        acknowledged reminder, so a crash between the two steps heals on the
        next attempt; the expander itself is idempotent.
        """
        reminder, changed = self.store.acknowledge(reminder_id)

        next_reminder = None
        if resolve_obligation_type(reminder.type) == ObligationType.SCHEDULE:
            next_reminder = self.expander.expand(reminder.obligation)
            reminder = self.store.get_reminder(reminder_id)

        return reminder, changed, next_reminder

    def complete_obligation(self, obligation_id: str) -> Dict:
        """
        Manual "perform check" path: acknowledge every active reminder of an
        obligation, stamp it completed, and expand the next occurrence.
        """
        obligation = self.obligations.get(obligation_id)

        acknowledged = []
        for reminder in self.store.active_for_obligation(obligation.id):
            _, changed = self.store.acknowledge(reminder.id)
            if changed:
                acknowledged.append(reminder.id)

        obligation = self.obligations.get(obligation_id)
        if obligation.completed_at is None:
            obligation.completed_at = self.clock()
            self.db.commit()

        next_reminder = self.expander.expand(self.obligations.get(obligation_id))

        logger.info(
            f"Obligation {obligation_id} completed: {len(acknowledged)} reminder(s) acknowledged, "
            f"next occurrence {'created' if next_reminder else 'not created'}"
        )
        return {
            "obligation_id": obligation_id,
            "acknowledged_reminder_ids": acknowledged,
            "next_reminder": next_reminder,
        }

    # =========================================================================
    # EMAIL CHANNEL
    # =========================================================================

    def mark_email_sent(self, reminder_id: str) -> ReminderDB:
        self.store.mark_email_sent(reminder_id)
        self.db.commit()
        return self.store.get_reminder(reminder_id)

    def email_template(self, reminder_id: str, today: Optional[date] = None) -> Dict[str, str]:
        reminder = self.store.get_reminder(reminder_id)
        obligation: ObligationDB = reminder.obligation
        today = today or self.clock().date()
        return email_template(obligation, days_until_due(reminder.due_date, today))
