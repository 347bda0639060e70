"""
Due-Reminder Sweeper

Periodic (or operator-triggered) reconciliation pass over the reminder store.

For each active reminder whose reminder_date has arrived:
1. Decide which milestone bucket today falls into (Lead-Time Policy)
2. Atomically claim it (conditional UPDATE - loser of a race sees 0 rows)
3. Fan out notifications in the same transaction
4. Commit, or roll back everything for that reminder on failure
5. Attempt the email, if due, only after the commit

Delivery guarantee: at-least-once, rarely more, never less. A failed
transaction leaves the reminder claimable on the next sweep; the only
duplicate window is two sweeps passing the conditional check under weak
storage isolation.

A single bad reminder never aborts the batch - failures are recorded in the
SweepReport and the loop moves on.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import (
    ObligationDB, ReminderDB, NotificationDB, ReminderStatus, ObligationType,
    resolve_obligation_type,
)
from .fanout import NotificationFanout, RecipientDirectory
from .lead_time import days_until_due, milestone_bucket, milestone_label
from .store import ReminderStore


logger = logging.getLogger(__name__)


# Milestones at which an email delivery attempt is warranted (once per reminder)
EMAIL_MILESTONES = {
    ObligationType.CALIBRATION: {30},
    ObligationType.RENTAL: {7},
    ObligationType.MAINTENANCE: {7},
    ObligationType.SCHEDULE: set(),
}

EmailSender = Callable[[ReminderDB, List[NotificationDB]], bool]


class SkipReason(str, Enum):
    """Reason codes reported for skipped reminders."""
    ALREADY_SENT_TODAY = "already-sent-today"
    NOT_ELIGIBLE_DAY = "not-eligible-day"
    ACKNOWLEDGED = "acknowledged"
    UNKNOWN_TYPE = "unknown-type"


def should_attempt_email(reminder_type, bucket: int, email_sent: bool) -> bool:
    """Whether this claim warrants an email attempt on the secondary channel."""
    if email_sent:
        return False
    obligation_type = resolve_obligation_type(reminder_type)
    return bucket in EMAIL_MILESTONES.get(obligation_type, set())


# =============================================================================
# SWEEP REPORT
# =============================================================================

@dataclass
class ReminderResult:
    """Outcome for one reminder in one sweep."""
    reminder_id: str
    status: str  # created | skipped | error
    reminder_type: str
    reason: Optional[str] = None
    milestone: Optional[str] = None
    days_remaining: Optional[int] = None
    notification_ids: List[str] = field(default_factory=list)
    email_attempted: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "reminder_id": self.reminder_id,
            "status": self.status,
            "reminder_type": self.reminder_type,
        }
        if self.reason is not None:
            data["reason"] = self.reason
        if self.status == "created":
            data.update({
                "milestone": self.milestone,
                "days_remaining": self.days_remaining,
                "notification_ids": self.notification_ids,
                "notifications_count": len(self.notification_ids),
                "email_attempted": self.email_attempted,
            })
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class SweepReport:
    """Externally observed contract of one sweep invocation."""
    run_date: date
    force: bool = False
    backfilled: int = 0
    results: List[ReminderResult] = field(default_factory=list)

    @property
    def created(self) -> int:
        return sum(1 for r in self.results if r.status == "created")

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.status == "skipped")

    @property
    def errors(self) -> int:
        return sum(1 for r in self.results if r.status == "error")

    @property
    def skip_reasons(self) -> Dict[str, int]:
        reasons: Dict[str, int] = {}
        for result in self.results:
            if result.status == "skipped" and result.reason:
                reasons[result.reason] = reasons.get(result.reason, 0) + 1
        return reasons

    @property
    def results_by_type(self) -> Dict[str, List[Dict[str, Any]]]:
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for result in self.results:
            grouped.setdefault(result.reminder_type or "unknown", []).append(result.to_dict())
        return grouped

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_date": self.run_date.isoformat(),
            "force": self.force,
            "processed": len(self.results),
            "created": self.created,
            "skipped": self.skipped,
            "errors": self.errors,
            "skip_reasons": self.skip_reasons,
            "skipReasons": self.skip_reasons,
            "backfilled": self.backfilled,
            "results_by_type": self.results_by_type,
            "resultsByType": self.results_by_type,
            "results": [r.to_dict() for r in self.results],
        }


# =============================================================================
# SWEEPER
# =============================================================================

class DueReminderSweeper:
    """
    Evaluates every active reminder against the Lead-Time Policy.

    Usage:
        sweeper = DueReminderSweeper(db)
        report = sweeper.run(today=date(2025, 3, 24))
    """

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = datetime.utcnow,
        directory: Optional[RecipientDirectory] = None,
        email_sender: Optional[EmailSender] = None,
    ):
        self.db = db
        self.clock = clock
        self.store = ReminderStore(db, clock=clock)
        self.fanout = NotificationFanout(db, directory or RecipientDirectory(db))
        self.email_sender = email_sender

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    def run(self, today: Optional[date] = None, force: bool = False, backfill: bool = True) -> SweepReport:
        """
        Run one sweep.

        force=True bypasses the eligible-day check (operator catch-up) but
        still honours the once-per-day claim.
        """
        today = today or self.clock().date()
        report = SweepReport(run_date=today, force=force)

        logger.info(f"Starting reminder sweep for {today.isoformat()} (force={force})")

        if backfill:
            report.backfilled = self.backfill_missing()

        for reminder_id in self.candidate_ids(today):
            report.results.append(self.process(reminder_id, today, force))

        logger.info(
            f"Reminder sweep complete: {len(report.results)} processed, "
            f"{report.created} created, {report.skipped} skipped, {report.errors} errors"
        )
        return report

    # =========================================================================
    # CANDIDATES
    # =========================================================================

    def candidate_ids(self, today: date) -> List[str]:
        """Active reminders whose reminder_date has arrived, in stable order."""
        rows = (
            self.db.query(ReminderDB.id)
            .filter(
                ReminderDB.reminder_date <= today,
                ReminderDB.status != ReminderStatus.ACKNOWLEDGED,
            )
            .order_by(ReminderDB.reminder_date, ReminderDB.id)
            .all()
        )
        return [row[0] for row in rows]

    def backfill_missing(self) -> int:
        """
        Create reminders for obligations that never got one (missed
        creation events). Obligations whose reminders were acknowledged
        are left alone.
        """
        orphans = (
            self.db.query(ObligationDB)
            .outerjoin(ReminderDB, ReminderDB.obligation_id == ObligationDB.id)
            .filter(
                ReminderDB.id.is_(None),
                ObligationDB.due_date.isnot(None),
                ObligationDB.completed_at.is_(None),
            )
            .order_by(ObligationDB.id)
            .all()
        )

        created = 0
        for obligation in orphans:
            obligation_type = resolve_obligation_type(obligation.kind)
            if obligation_type is None:
                continue
            try:
                _, was_created = self.store.create_reminder(obligation.id, obligation_type)
            except Exception as e:
                self.db.rollback()
                logger.error(f"Backfill failed for obligation {obligation.id}: {e}")
                continue
            if was_created:
                created += 1

        if created:
            logger.info(f"Backfilled {created} missing reminder(s)")
        return created

    # =========================================================================
    # PER-REMINDER PROCESSING
    # =========================================================================

    def process(self, reminder_id: str, today: date, force: bool = False) -> ReminderResult:
        """Evaluate, claim and deliver one reminder. Never raises."""
        reminder_type = "unknown"
        try:
            reminder = self.store.get_reminder(reminder_id)
            reminder_type = reminder.type

            if reminder.status == ReminderStatus.ACKNOWLEDGED:
                return self._skip(reminder_id, reminder_type, SkipReason.ACKNOWLEDGED)

            obligation_type = resolve_obligation_type(reminder.type)
            if obligation_type is None:
                return self._skip(reminder_id, reminder_type, SkipReason.UNKNOWN_TYPE)

            if reminder.last_sent_on is not None and reminder.last_sent_on >= today:
                return self._skip(reminder_id, reminder_type, SkipReason.ALREADY_SENT_TODAY)

            bucket = milestone_bucket(obligation_type, reminder.due_date, today)
            if bucket is None:
                if not force:
                    return self._skip(reminder_id, reminder_type, SkipReason.NOT_ELIGIBLE_DAY)
                bucket = days_until_due(reminder.due_date, today)

            return self._claim_and_deliver(reminder, obligation_type, bucket, today)

        except Exception as e:
            self.db.rollback()
            logger.error(f"Error processing reminder {reminder_id}: {e}")
            return ReminderResult(
                reminder_id=reminder_id,
                status="error",
                reminder_type=reminder_type,
                error=str(e),
            )

    def _claim_and_deliver(
        self,
        reminder: ReminderDB,
        obligation_type: ObligationType,
        bucket: int,
        today: date,
    ) -> ReminderResult:
        if not self.store.claim(reminder, bucket, today):
            # Lost the race (or already claimed) - report what we now see
            self.db.rollback()
            current = self.store.get_reminder(reminder.id)
            reason = (
                SkipReason.ACKNOWLEDGED
                if current.status == ReminderStatus.ACKNOWLEDGED
                else SkipReason.ALREADY_SENT_TODAY
            )
            return self._skip(reminder.id, reminder.type, reason)

        obligation = reminder.obligation
        notifications = self.fanout.deliver_reminder(reminder, obligation, bucket)
        notification_ids = [n.id for n in notifications]

        send_email = self.email_sender is not None and should_attempt_email(
            obligation_type, bucket, reminder.email_sent
        )

        self.db.commit()

        # Email goes out only after the claim is durable
        if send_email:
            self._send_email(reminder, notifications)

        logger.info(
            f"Reminder {reminder.id} ({obligation_type.value}) fired {milestone_label(bucket)}: "
            f"{len(notification_ids)} notification(s)"
        )
        return ReminderResult(
            reminder_id=reminder.id,
            status="created",
            reminder_type=obligation_type.value,
            milestone=milestone_label(bucket),
            days_remaining=bucket,
            notification_ids=notification_ids,
            email_attempted=send_email,
        )

    def _send_email(self, reminder: ReminderDB, notifications: List[NotificationDB]) -> None:
        try:
            sent = self.email_sender(reminder, notifications)
        except Exception as e:
            logger.warning(f"Email delivery failed for reminder {reminder.id}: {e}")
            return
        if not sent:
            return
        try:
            self.store.mark_email_sent(reminder.id)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"Email sent but not recorded for reminder {reminder.id}: {e}")

    def _skip(self, reminder_id: str, reminder_type: str, reason: SkipReason) -> ReminderResult:
        return ReminderResult(
            reminder_id=reminder_id,
            status="skipped",
            reminder_type=reminder_type,
            reason=reason.value,
        )
