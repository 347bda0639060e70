"""
Reminder Store & State Machine

Persistent reminder lifecycle:

    PENDING ──claim──▶ SENT ──claim (later milestone)──▶ SENT
       │                 │
       └──acknowledge────┴──────────▶ ACKNOWLEDGED (terminal, frozen)

All transitions are conditional UPDATEs (compare-and-swap on status /
milestone / version), never read-then-write, so overlapping sweeps and
retried client calls cannot double-apply them.

The store flushes but does not commit; callers own the transaction.
"""
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional, Tuple
from uuid import uuid4
import logging

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import (
    ObligationDB, ReminderDB, NotificationDB, ReminderStatus, ObligationType,
    RecurrenceFrequency, resolve_obligation_type,
)
from .exceptions import (
    ValidationError, ObligationNotFound, ReminderNotFound, TransientStoreError,
)
from .lead_time import primary_lead_days
from .messages import reminder_summary


logger = logging.getLogger(__name__)


# =============================================================================
# OBLIGATION REGISTRY
# =============================================================================

class ObligationRegistry:
    """
    Receives obligation references pushed by the surrounding tracker.

    The engine never decides due dates; it only stores what it is given.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, obligation_id: str) -> ObligationDB:
        obligation = self.db.get(ObligationDB, obligation_id)
        if obligation is None:
            raise ObligationNotFound(f"Obligation {obligation_id} not found")
        return obligation

    def register(
        self,
        obligation_id: str,
        kind: ObligationType,
        due_date: Optional[date],
        owner_user_id: Optional[str] = None,
        title: Optional[str] = None,
        item_name: Optional[str] = None,
        serial_number: Optional[str] = None,
        customer_name: Optional[str] = None,
        is_recurring: bool = False,
        frequency: Optional[RecurrenceFrequency] = None,
    ) -> ObligationDB:
        """Insert or refresh an obligation reference (upsert by id)."""
        obligation_type = resolve_obligation_type(kind)
        if obligation_type is None:
            raise ValidationError(f"Unknown obligation type {kind!r}")
        if due_date is None and obligation_type != ObligationType.SCHEDULE:
            raise ValidationError(f"{obligation_type.value} obligations require a due date")
        if is_recurring and frequency is None:
            raise ValidationError("Recurring obligations require a frequency")

        obligation = self.db.get(ObligationDB, obligation_id)
        if obligation is None:
            obligation = ObligationDB(id=obligation_id, lineage_id=obligation_id)
            self.db.add(obligation)

        obligation.kind = obligation_type.value
        obligation.due_date = due_date
        obligation.owner_user_id = owner_user_id
        obligation.title = title
        obligation.item_name = item_name
        obligation.serial_number = serial_number
        obligation.customer_name = customer_name
        obligation.is_recurring = is_recurring
        obligation.frequency = frequency

        self.db.flush()
        return obligation


# =============================================================================
# REMINDER STORE
# =============================================================================

class ReminderStore:
    """
    Persistence and state transitions for ReminderDB.

    Core guarantees:
    - create is idempotent per (obligation, lead_days) among active reminders
    - claim is a conditional update; the loser of a race sees 0 rows
    - acknowledge is idempotent; ACKNOWLEDGED rows are never modified again
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = datetime.utcnow):
        self.db = db
        self.clock = clock
        self.obligations = ObligationRegistry(db)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_reminder(self, reminder_id: str) -> ReminderDB:
        reminder = self.db.get(ReminderDB, reminder_id)
        if reminder is None:
            raise ReminderNotFound(f"Reminder {reminder_id} not found")
        return reminder

    def find_active(self, obligation_id: str, lead_days: int) -> Optional[ReminderDB]:
        return (
            self.db.query(ReminderDB)
            .filter(
                ReminderDB.obligation_id == obligation_id,
                ReminderDB.lead_days == lead_days,
                ReminderDB.status != ReminderStatus.ACKNOWLEDGED,
            )
            .first()
        )

    def list_reminders(
        self,
        reminder_type: Optional[ObligationType] = None,
        status: Optional[ReminderStatus] = None,
        user_id: Optional[str] = None,
    ) -> List[ReminderDB]:
        query = self.db.query(ReminderDB)
        if reminder_type is not None:
            query = query.filter(ReminderDB.type == reminder_type.value)
        if status is not None:
            query = query.filter(ReminderDB.status == status)
        if user_id is not None:
            query = query.filter(ReminderDB.user_id == user_id)
        return query.order_by(ReminderDB.reminder_date, ReminderDB.id).all()

    def active_for_obligation(self, obligation_id: str) -> List[ReminderDB]:
        return (
            self.db.query(ReminderDB)
            .populate_existing()
            .filter(
                ReminderDB.obligation_id == obligation_id,
                ReminderDB.status != ReminderStatus.ACKNOWLEDGED,
            )
            .all()
        )

    # =========================================================================
    # CREATE (IDEMPOTENT)
    # =========================================================================

    def build_reminder(self, obligation: ObligationDB) -> ReminderDB:
        """Construct (and add) a PENDING reminder for an obligation."""
        obligation_type = resolve_obligation_type(obligation.kind)
        if obligation_type is None:
            raise ValidationError(f"Unknown obligation type {obligation.kind!r}")
        if obligation.due_date is None:
            raise ValidationError(f"Obligation {obligation.id} has no due date yet")

        lead_days = primary_lead_days(obligation_type)
        title, message = reminder_summary(obligation)

        reminder = ReminderDB(
            id=str(uuid4()),
            type=obligation_type.value,
            obligation_id=obligation.id,
            user_id=obligation.owner_user_id,
            lead_days=lead_days,
            due_date=obligation.due_date,
            reminder_date=obligation.due_date - timedelta(days=lead_days),
            status=ReminderStatus.PENDING,
            sent_count=0,
            version=0,
            email_sent=False,
            title=title,
            message=message,
        )
        self.db.add(reminder)
        return reminder

    def create_reminder(
        self,
        obligation_id: str,
        reminder_type: ObligationType,
    ) -> Tuple[ReminderDB, bool]:
        """
        Create a reminder for an obligation, or return the active one.

        Returns (reminder, created). Commits on success.
        """
        obligation = self.obligations.get(obligation_id)

        obligation_type = resolve_obligation_type(reminder_type)
        if obligation_type is None:
            raise ValidationError(f"Unknown reminder type {reminder_type!r}")
        if obligation_type != resolve_obligation_type(obligation.kind):
            raise ValidationError(
                f"Reminder type {obligation_type.value} does not match obligation kind {obligation.kind}"
            )

        existing = self.find_active(obligation.id, primary_lead_days(obligation_type))
        if existing is not None:
            if existing.due_date != obligation.due_date:
                existing_id = existing.id
                try:
                    self.reschedule_active(obligation)
                    self.db.commit()
                except (SQLAlchemyError, TransientStoreError) as e:
                    self.db.rollback()
                    raise TransientStoreError(f"Failed to reschedule reminder {existing_id}: {e}") from e
                existing = self.get_reminder(existing_id)
            return existing, False

        reminder = self.build_reminder(obligation)
        reminder_id = reminder.id
        lead_days = reminder.lead_days
        try:
            self.db.commit()
        except IntegrityError:
            # Lost the race against a concurrent create - return the winner
            self.db.rollback()
            existing = self.find_active(obligation_id, lead_days)
            if existing is None:
                raise TransientStoreError(f"Reminder insert for {obligation_id} conflicted but no winner found")
            return existing, False
        except SQLAlchemyError as e:
            self.db.rollback()
            raise TransientStoreError(f"Failed to create reminder for {obligation_id}: {e}") from e

        logger.info(f"Created {obligation_type.value} reminder {reminder_id} for obligation {obligation_id}")
        return self.get_reminder(reminder_id), True

    def reschedule_active(self, obligation: ObligationDB) -> List[str]:
        """
        Move active reminders onto the obligation's current due date.

        A moved reminder starts over: PENDING, no fired milestone, email
        not sent. Returns the ids that changed. Flushes only.
        """
        if obligation.due_date is None:
            return []

        title, message = reminder_summary(obligation)
        now = self.clock()
        moved = []
        for reminder in self.active_for_obligation(obligation.id):
            if reminder.due_date == obligation.due_date:
                continue
            try:
                updated = (
                    self.db.query(ReminderDB)
                    .filter(
                        ReminderDB.id == reminder.id,
                        ReminderDB.version == reminder.version,
                        ReminderDB.status != ReminderStatus.ACKNOWLEDGED,
                    )
                    .update(
                        {
                            ReminderDB.due_date: obligation.due_date,
                            ReminderDB.reminder_date: obligation.due_date - timedelta(days=reminder.lead_days),
                            ReminderDB.title: title,
                            ReminderDB.message: message,
                            ReminderDB.status: ReminderStatus.PENDING,
                            ReminderDB.last_milestone: None,
                            ReminderDB.email_sent: False,
                            ReminderDB.version: ReminderDB.version + 1,
                            ReminderDB.updated_at: now,
                        },
                        synchronize_session=False,
                    )
                )
            except SQLAlchemyError as e:
                raise TransientStoreError(f"Reschedule failed for reminder {reminder.id}: {e}") from e
            if updated:
                moved.append(reminder.id)
                logger.info(
                    f"Reminder {reminder.id} moved from {reminder.due_date} to {obligation.due_date}"
                )

        if moved:
            self.db.expire_all()
        return moved

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def claim(self, reminder: ReminderDB, bucket: int, today: date) -> bool:
        """
        PENDING|SENT -> SENT for a specific milestone bucket.

        Succeeds only if the reminder is not acknowledged, was not claimed
        today, the bucket advanced past the last fired one, and nobody else
        changed the row since it was read (version).
        """
        try:
            updated = (
                self.db.query(ReminderDB)
                .filter(
                    ReminderDB.id == reminder.id,
                    ReminderDB.version == reminder.version,
                    ReminderDB.status != ReminderStatus.ACKNOWLEDGED,
                    or_(ReminderDB.last_sent_on.is_(None), ReminderDB.last_sent_on < today),
                    or_(ReminderDB.last_milestone.is_(None), ReminderDB.last_milestone > bucket),
                )
                .update(
                    {
                        ReminderDB.status: ReminderStatus.SENT,
                        ReminderDB.last_milestone: bucket,
                        ReminderDB.last_sent_on: today,
                        ReminderDB.sent_count: ReminderDB.sent_count + 1,
                        ReminderDB.version: ReminderDB.version + 1,
                        ReminderDB.updated_at: self.clock(),
                    },
                    synchronize_session=False,
                )
            )
        except SQLAlchemyError as e:
            raise TransientStoreError(f"Claim failed for reminder {reminder.id}: {e}") from e

        return updated == 1

    def acknowledge(self, reminder_id: str) -> Tuple[ReminderDB, bool]:
        """
        PENDING|SENT -> ACKNOWLEDGED. Returns (reminder, changed).

        Acknowledging an already-acknowledged reminder is a no-op that
        returns the unchanged row. Commits on success.
        """
        reminder = self.get_reminder(reminder_id)
        if reminder.status == ReminderStatus.ACKNOWLEDGED:
            return reminder, False

        now = self.clock()
        try:
            updated = (
                self.db.query(ReminderDB)
                .filter(
                    ReminderDB.id == reminder_id,
                    ReminderDB.status != ReminderStatus.ACKNOWLEDGED,
                )
                .update(
                    {
                        ReminderDB.status: ReminderStatus.ACKNOWLEDGED,
                        ReminderDB.acknowledged_at: now,
                        ReminderDB.version: ReminderDB.version + 1,
                        ReminderDB.updated_at: now,
                    },
                    synchronize_session=False,
                )
            )
            if updated:
                # Related notifications are considered handled
                (
                    self.db.query(NotificationDB)
                    .filter(
                        NotificationDB.reminder_id == reminder_id,
                        NotificationDB.is_read.is_(False),
                    )
                    .update(
                        {NotificationDB.is_read: True, NotificationDB.read_at: now},
                        synchronize_session=False,
                    )
                )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise TransientStoreError(f"Acknowledge failed for reminder {reminder_id}: {e}") from e

        self.db.expire_all()
        reminder = self.get_reminder(reminder_id)
        if updated:
            logger.info(f"Reminder {reminder_id} acknowledged")
        return reminder, bool(updated)

    def mark_email_sent(self, reminder_id: str) -> ReminderDB:
        """Bookkeeping for the email channel; independent of status. Flushes only."""
        reminder = self.get_reminder(reminder_id)
        if reminder.status == ReminderStatus.ACKNOWLEDGED:
            return reminder

        now = self.clock()
        (
            self.db.query(ReminderDB)
            .filter(
                ReminderDB.id == reminder_id,
                ReminderDB.status != ReminderStatus.ACKNOWLEDGED,
            )
            .update(
                {
                    ReminderDB.email_sent: True,
                    ReminderDB.email_sent_at: now,
                    ReminderDB.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        return reminder
