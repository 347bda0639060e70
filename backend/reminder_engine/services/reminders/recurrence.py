"""
Recurrence Expander

When a recurring obligation's cycle completes (its SCHEDULE reminder is
acknowledged, or the check is performed manually), compute the next
occurrence and create the next obligation instance plus its first reminder.

Month arithmetic CLAMPS day-of-month overflow to the last valid day:
2025-01-31 + 1 month = 2025-02-28 (never rolls into March). The step is
always added to the current due date, not to "today", so a clamped chain
continues from the clamped day (Jan 31 -> Feb 28 -> Mar 28).

Expansion is idempotent: an existing reminder for the computed due date in
the same lineage makes it a no-op, and the (lineage_id, due_date) unique
constraint catches races between the acknowledge and perform-check paths.
"""
from datetime import date
from typing import Optional
from uuid import uuid4
import logging

from dateutil.relativedelta import relativedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models.db_models import ObligationDB, ReminderDB, RecurrenceFrequency
from .exceptions import RecurrenceConflict, ValidationError
from .store import ReminderStore


logger = logging.getLogger(__name__)


FREQUENCY_STEPS = {
    RecurrenceFrequency.MONTHLY: relativedelta(months=1),
    RecurrenceFrequency.YEARLY: relativedelta(years=1),
}


def next_occurrence(due_date: date, frequency: RecurrenceFrequency) -> date:
    """Add one frequency unit to the current due date (clamped to month end)."""
    step = FREQUENCY_STEPS.get(frequency)
    if step is None:
        raise ValidationError(f"Unsupported recurrence frequency {frequency!r}")
    return due_date + step


class RecurrenceExpander:
    """
    Spawns the next occurrence of a recurring obligation.

    Usage:
        expander = RecurrenceExpander(db)
        next_reminder = expander.expand(obligation)   # None when no-op
    """

    def __init__(self, db: Session, store: Optional[ReminderStore] = None):
        self.db = db
        self.store = store or ReminderStore(db)

    def find_existing(self, lineage_id: str, due_date: date) -> Optional[ReminderDB]:
        return (
            self.db.query(ReminderDB)
            .join(ObligationDB, ReminderDB.obligation_id == ObligationDB.id)
            .filter(
                ObligationDB.lineage_id == lineage_id,
                ReminderDB.due_date == due_date,
            )
            .first()
        )

    def expand(self, obligation: ObligationDB) -> Optional[ReminderDB]:
        """
        Create the next obligation instance and its first reminder.

        Returns the new reminder, or None when the obligation does not recur
        or the next occurrence already exists (conflicts are success).
        """
        if not obligation.is_recurring or obligation.frequency is None or obligation.due_date is None:
            return None

        lineage_id = obligation.lineage_id or obligation.id
        next_due = next_occurrence(obligation.due_date, obligation.frequency)

        try:
            reminder = self._create_next(obligation, lineage_id, next_due)
        except RecurrenceConflict as e:
            logger.info(f"Recurrence already expanded for lineage {lineage_id}: {e}")
            return None

        logger.info(
            f"Expanded recurrence {lineage_id}: next occurrence {next_due.isoformat()} "
            f"(reminder {reminder.id})"
        )
        return reminder

    def _create_next(self, obligation: ObligationDB, lineage_id: str, next_due: date) -> ReminderDB:
        if self.find_existing(lineage_id, next_due) is not None:
            raise RecurrenceConflict(f"reminder for {next_due.isoformat()} exists")

        next_obligation = (
            self.db.query(ObligationDB)
            .filter(
                ObligationDB.lineage_id == lineage_id,
                ObligationDB.due_date == next_due,
            )
            .first()
        )
        try:
            if next_obligation is None:
                next_obligation = ObligationDB(
                    id=str(uuid4()),
                    kind=obligation.kind,
                    title=obligation.title,
                    item_name=obligation.item_name,
                    serial_number=obligation.serial_number,
                    customer_name=obligation.customer_name,
                    due_date=next_due,
                    owner_user_id=obligation.owner_user_id,
                    is_recurring=True,
                    frequency=obligation.frequency,
                    lineage_id=lineage_id,
                    previous_id=obligation.id,
                )
                self.db.add(next_obligation)
                self.db.flush()

            reminder = self.store.build_reminder(next_obligation)
            reminder_id = reminder.id
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise RecurrenceConflict(f"concurrent expansion for {next_due.isoformat()}") from e

        return self.store.get_reminder(reminder_id)
