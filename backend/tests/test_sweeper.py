"""
Tests for the Due-Reminder Sweeper.

1. Calibration milestones fire once each (30 / 7 / 1 days out)
2. Repeat runs on the same day report already-sent-today
3. Rental window fires on each day of the window
4. force bypasses the eligible-day check but not the daily dedup
5. Unknown types fail closed
6. One bad reminder never aborts the batch; its claim is rolled back
7. Backfill of obligations that never got a reminder
8. Email decision on the secondary channel, attempted after commit
9. A moved due date restarts the milestone sequence
"""
import pytest
from datetime import date, timedelta
from unittest.mock import MagicMock
from uuid import uuid4

from reminder_engine.models.db_models import (
    NotificationDB, ObligationDB, ObligationType, ReminderDB, ReminderStatus,
)
from reminder_engine.services.reminders import (
    DueReminderSweeper, RecipientResolutionError, ReminderStore, SkipReason,
)


def notification_count(db, reminder_id=None) -> int:
    query = db.query(NotificationDB)
    if reminder_id is not None:
        query = query.filter(NotificationDB.reminder_id == reminder_id)
    return query.count()


@pytest.fixture
def calibration(db, make_obligation, admin, owner):
    """Calibration due 2025-03-31 owned by a non-admin user."""
    obligation = make_obligation(ObligationType.CALIBRATION, date(2025, 3, 31), owner=owner)
    reminder, _ = ReminderStore(db).create_reminder(obligation.id, ObligationType.CALIBRATION)
    return reminder


# =============================================================================
# CALIBRATION MILESTONES
# =============================================================================

class TestCalibrationMilestones:

    def test_fifty_eight_days_out_does_not_fire(self, db, calibration):
        report = DueReminderSweeper(db).run(today=date(2025, 2, 1))

        assert report.created == 0
        assert notification_count(db) == 0

    def test_thirty_days_out_fires(self, db, calibration, admin, owner):
        report = DueReminderSweeper(db).run(today=date(2025, 3, 1))

        assert report.created == 1
        result = report.results[0]
        assert result.milestone == "H-30"
        assert result.days_remaining == 30

        notifications = db.query(NotificationDB).all()
        assert {n.user_id for n in notifications} == {admin.id, owner.id}
        assert {n.related_id for n in notifications} == {calibration.obligation_id}
        assert any(n.title.startswith("[ADMIN]") for n in notifications)
        assert any(n.title.startswith("[USER]") for n in notifications)

        reminder = db.get(ReminderDB, calibration.id)
        assert reminder.status == ReminderStatus.SENT
        assert reminder.last_milestone == 30

    def test_same_day_rerun_does_not_refire(self, db, calibration):
        """Two sweeps in a row produce exactly one set of notifications."""
        DueReminderSweeper(db).run(today=date(2025, 3, 24))
        count = notification_count(db)

        report = DueReminderSweeper(db).run(today=date(2025, 3, 24))

        assert report.created == 0
        assert report.skipped == 1
        assert report.skip_reasons == {SkipReason.ALREADY_SENT_TODAY.value: 1}
        assert notification_count(db) == count

    def test_each_milestone_fires_once(self, db, calibration):
        sweeper = DueReminderSweeper(db)
        fired = []
        day = date(2025, 3, 1)
        while day <= date(2025, 3, 31):
            report = sweeper.run(today=day)
            fired.extend(r.milestone for r in report.results if r.status == "created")
            day += timedelta(days=1)

        assert fired == ["H-30", "H-7", "H-1"]
        assert db.get(ReminderDB, calibration.id).sent_count == 3

    def test_between_milestones_reports_not_eligible(self, db, calibration):
        report = DueReminderSweeper(db).run(today=date(2025, 3, 10))

        assert report.skip_reasons == {SkipReason.NOT_ELIGIBLE_DAY.value: 1}

    def test_acknowledged_reminders_are_not_candidates(self, db, calibration):
        ReminderStore(db).acknowledge(calibration.id)

        report = DueReminderSweeper(db).run(today=date(2025, 3, 1))

        assert report.to_dict()["processed"] == 0
        assert notification_count(db) == 0


# =============================================================================
# RENTAL WINDOW
# =============================================================================

class TestRentalWindow:

    def test_fires_every_day_in_window(self, db, make_obligation, admin, owner):
        obligation = make_obligation(ObligationType.RENTAL, date(2025, 6, 10), owner=owner)
        reminder, _ = ReminderStore(db).create_reminder(obligation.id, ObligationType.RENTAL)
        sweeper = DueReminderSweeper(db)

        created_days = []
        day = date(2025, 6, 3)
        while day <= date(2025, 6, 11):
            if sweeper.run(today=day).created:
                created_days.append(day.day)
            day += timedelta(days=1)

        assert created_days == [3, 7, 8, 9, 10]
        # Fresh notification per day: admin + owner each time
        assert notification_count(db, reminder.id) == 10


# =============================================================================
# FORCE
# =============================================================================

class TestForce:

    def test_force_bypasses_eligible_day(self, db, calibration):
        report = DueReminderSweeper(db).run(today=date(2025, 3, 10), force=True)

        assert report.created == 1
        assert report.results[0].days_remaining == 21
        assert report.to_dict()["force"] is True

    def test_force_still_honours_daily_dedup(self, db, calibration):
        sweeper = DueReminderSweeper(db)
        sweeper.run(today=date(2025, 3, 10), force=True)

        report = sweeper.run(today=date(2025, 3, 10), force=True)

        assert report.created == 0
        assert report.skip_reasons == {SkipReason.ALREADY_SENT_TODAY.value: 1}

    def test_scheduled_milestone_still_fires_after_forced_catch_up(self, db, calibration):
        sweeper = DueReminderSweeper(db)
        sweeper.run(today=date(2025, 3, 10), force=True)

        report = sweeper.run(today=date(2025, 3, 24))

        assert report.created == 1
        assert report.results[0].milestone == "H-7"


# =============================================================================
# FAILURE ISOLATION
# =============================================================================

class TestFailureIsolation:

    def _insert_unknown_type(self, db):
        obligation = ObligationDB(
            id=str(uuid4()), kind="LOAN", due_date=date(2025, 3, 1), lineage_id="loan-lineage",
        )
        db.add(obligation)
        reminder = ReminderDB(
            id=str(uuid4()),
            type="LOAN",
            obligation_id=obligation.id,
            lead_days=0,
            due_date=date(2025, 3, 1),
            reminder_date=date(2025, 3, 1),
            status=ReminderStatus.PENDING,
        )
        db.add(reminder)
        db.commit()
        return reminder

    def test_unknown_type_is_skipped(self, db, admin):
        reminder = self._insert_unknown_type(db)

        report = DueReminderSweeper(db).run(today=date(2025, 3, 1))

        assert report.skip_reasons == {SkipReason.UNKNOWN_TYPE.value: 1}
        assert notification_count(db, reminder.id) == 0

    def test_bad_recipient_is_isolated_and_rolled_back(self, db, make_obligation, admin, owner):
        """Missing owner fails its reminder only; the claim is rolled back."""
        store = ReminderStore(db)
        good = make_obligation(ObligationType.CALIBRATION, date(2025, 3, 31), owner=owner)
        bad = make_obligation(ObligationType.CALIBRATION, date(2025, 3, 31))
        bad.owner_user_id = "ghost-user"
        db.commit()
        good_reminder, _ = store.create_reminder(good.id, ObligationType.CALIBRATION)
        bad_reminder, _ = store.create_reminder(bad.id, ObligationType.CALIBRATION)

        report = DueReminderSweeper(db).run(today=date(2025, 3, 1))

        assert report.created == 1
        assert report.errors == 1
        error = next(r for r in report.results if r.status == "error")
        assert error.reminder_id == bad_reminder.id
        assert "ghost-user" in error.error

        # No partial state: still claimable, no stray admin notification
        reloaded = db.get(ReminderDB, bad_reminder.id)
        assert reloaded.status == ReminderStatus.PENDING
        assert reloaded.last_sent_on is None
        assert notification_count(db, bad_reminder.id) == 0
        assert notification_count(db, good_reminder.id) == 2

    def test_failed_reminder_is_retried_next_sweep(self, db, make_obligation, make_user, admin):
        store = ReminderStore(db)
        obligation = make_obligation(ObligationType.RENTAL, date(2025, 6, 10))
        obligation.owner_user_id = "late-user"
        db.commit()
        reminder, _ = store.create_reminder(obligation.id, ObligationType.RENTAL)

        assert DueReminderSweeper(db).run(today=date(2025, 6, 7)).errors == 1

        late = make_user(email="late@example.com")
        db.query(ReminderDB).filter(ReminderDB.id == reminder.id).update({ReminderDB.user_id: late.id})
        db.commit()

        report = DueReminderSweeper(db).run(today=date(2025, 6, 8))
        assert report.created == 1
        assert report.errors == 0

    def test_owner_notified_when_no_admin_exists(self, db, make_obligation, owner):
        obligation = make_obligation(ObligationType.CALIBRATION, date(2025, 3, 31), owner=owner)
        reminder, _ = ReminderStore(db).create_reminder(obligation.id, ObligationType.CALIBRATION)

        report = DueReminderSweeper(db).run(today=date(2025, 3, 1))

        assert report.created == 1
        assert report.errors == 0
        notifications = db.query(NotificationDB).all()
        assert [n.user_id for n in notifications] == [owner.id]
        assert notifications[0].title.startswith("[USER]")
        assert db.get(ReminderDB, reminder.id).status == ReminderStatus.SENT

    def test_no_admin_and_no_owner_is_an_error(self, db, make_obligation):
        obligation = make_obligation(ObligationType.SCHEDULE, date(2025, 1, 31))
        reminder, _ = ReminderStore(db).create_reminder(obligation.id, ObligationType.SCHEDULE)

        report = DueReminderSweeper(db).run(today=date(2025, 1, 31))

        assert report.errors == 1
        assert notification_count(db) == 0
        assert db.get(ReminderDB, reminder.id).status == ReminderStatus.PENDING

    def test_directory_failure_is_recorded(self, db, calibration):
        directory = MagicMock()
        directory.holders_of.side_effect = RecipientResolutionError("directory offline")

        report = DueReminderSweeper(db, directory=directory).run(today=date(2025, 3, 1))

        assert report.errors == 1
        assert report.results[0].error == "directory offline"
        assert db.get(ReminderDB, calibration.id).status == ReminderStatus.PENDING


# =============================================================================
# MOVED DUE DATE
# =============================================================================

class TestMovedDueDate:

    def test_extended_rental_fires_again(self, db, make_obligation, admin, owner):
        obligation = make_obligation(ObligationType.RENTAL, date(2025, 3, 10), owner=owner, obligation_id="rental-1")
        store = ReminderStore(db)
        reminder, _ = store.create_reminder(obligation.id, ObligationType.RENTAL)
        assert DueReminderSweeper(db).run(today=date(2025, 3, 10)).created == 1

        moved = store.obligations.register(
            "rental-1", ObligationType.RENTAL, date(2025, 4, 10), owner_user_id=owner.id,
        )
        store.reschedule_active(moved)
        db.commit()
        before = notification_count(db, reminder.id)

        window_start = DueReminderSweeper(db).run(today=date(2025, 4, 3))
        due_day = DueReminderSweeper(db).run(today=date(2025, 4, 10))

        assert window_start.created == 1
        assert window_start.results[0].milestone == "H-7"
        assert due_day.created == 1
        assert notification_count(db, reminder.id) == before + 4


# =============================================================================
# BACKFILL
# =============================================================================

class TestBackfill:

    def test_missing_reminder_is_backfilled(self, db, make_obligation, admin):
        obligation = make_obligation(ObligationType.RENTAL, date(2025, 6, 10))

        report = DueReminderSweeper(db).run(today=date(2025, 6, 3))

        assert report.backfilled == 1
        assert report.created == 1
        assert db.query(ReminderDB).filter(ReminderDB.obligation_id == obligation.id).count() == 1

    def test_backfill_can_be_disabled(self, db, make_obligation, admin):
        make_obligation(ObligationType.RENTAL, date(2025, 6, 10))

        report = DueReminderSweeper(db).run(today=date(2025, 6, 3), backfill=False)

        assert report.backfilled == 0
        assert report.created == 0

    def test_acknowledged_obligation_is_not_backfilled(self, db, calibration):
        ReminderStore(db).acknowledge(calibration.id)

        report = DueReminderSweeper(db).run(today=date(2025, 3, 1))

        assert report.backfilled == 0


# =============================================================================
# EMAIL
# =============================================================================

class TestEmail:

    def test_calibration_email_at_thirty_days(self, db, calibration):
        sender = MagicMock(return_value=True)
        sweeper = DueReminderSweeper(db, email_sender=sender)

        report = sweeper.run(today=date(2025, 3, 1))

        assert sender.call_count == 1
        assert report.results[0].email_attempted is True
        reminder = db.get(ReminderDB, calibration.id)
        assert reminder.email_sent is True

        sweeper.run(today=date(2025, 3, 24))
        assert sender.call_count == 1

    def test_no_email_at_other_milestones(self, db, calibration):
        sender = MagicMock(return_value=True)

        DueReminderSweeper(db, email_sender=sender).run(today=date(2025, 3, 24))

        sender.assert_not_called()

    def test_rental_email_at_seven_days(self, db, make_obligation, admin):
        obligation = make_obligation(ObligationType.RENTAL, date(2025, 6, 10))
        ReminderStore(db).create_reminder(obligation.id, ObligationType.RENTAL)
        sender = MagicMock(return_value=True)

        DueReminderSweeper(db, email_sender=sender).run(today=date(2025, 6, 3))

        assert sender.call_count == 1

    def test_email_failure_keeps_in_app_delivery(self, db, calibration):
        sender = MagicMock(side_effect=RuntimeError("smtp down"))

        report = DueReminderSweeper(db, email_sender=sender).run(today=date(2025, 3, 1))

        assert report.created == 1
        assert report.errors == 0
        reminder = db.get(ReminderDB, calibration.id)
        assert reminder.status == ReminderStatus.SENT
        assert reminder.email_sent is False
        assert notification_count(db, calibration.id) == 2

    def test_email_sent_after_claim_is_committed(self, db, calibration):
        seen = {}

        def sender(reminder, notifications):
            seen["pending"] = len(db.new) + len(db.dirty)
            seen["persisted"] = db.query(NotificationDB).filter(
                NotificationDB.reminder_id == reminder.id
            ).count()
            return True

        report = DueReminderSweeper(db, email_sender=sender).run(today=date(2025, 3, 1))

        assert report.results[0].email_attempted is True
        assert seen == {"pending": 0, "persisted": 2}
        assert db.get(ReminderDB, calibration.id).email_sent is True


# =============================================================================
# REPORT
# =============================================================================

class TestReport:

    def test_report_dict_contract(self, db, calibration):
        data = DueReminderSweeper(db).run(today=date(2025, 3, 1)).to_dict()

        for key in (
            "processed", "created", "skipped", "errors", "skip_reasons",
            "results_by_type", "results", "run_date", "force", "backfilled",
            "skipReasons", "resultsByType",
        ):
            assert key in data
        assert data["run_date"] == "2025-03-01"
        assert data["processed"] == 1
        assert list(data["results_by_type"].keys()) == ["CALIBRATION"]
        assert data["results"][0]["notifications_count"] == 2
