"""
Tests for the Lead-Time Policy.

1. Milestones per obligation type
2. Discrete milestones (CALIBRATION)
3. Trailing window (RENTAL / MAINTENANCE)
4. Day-of (SCHEDULE)
5. Unknown types fail closed
"""
import pytest
from datetime import date, timedelta

from reminder_engine.models.db_models import ObligationType
from reminder_engine.services.reminders.lead_time import (
    milestones_for,
    primary_lead_days,
    days_until_due,
    milestone_bucket,
    is_eligible_day,
    milestone_label,
)


class TestMilestones:
    """Policy table lookups."""

    def test_calibration_milestones_descending(self):
        assert milestones_for(ObligationType.CALIBRATION) == [30, 7, 1]

    def test_rental_and_maintenance_share_policy(self):
        assert milestones_for(ObligationType.RENTAL) == [7]
        assert milestones_for(ObligationType.MAINTENANCE) == [7]

    def test_schedule_is_day_of(self):
        assert milestones_for(ObligationType.SCHEDULE) == [0]

    def test_string_tags_resolve(self):
        assert milestones_for("CALIBRATION") == [30, 7, 1]

    def test_unknown_type_has_no_milestones(self):
        assert milestones_for("LOAN") == []

    def test_primary_lead_days(self):
        assert primary_lead_days(ObligationType.CALIBRATION) == 30
        assert primary_lead_days(ObligationType.RENTAL) == 7
        assert primary_lead_days(ObligationType.SCHEDULE) == 0

    def test_primary_lead_days_unknown_type_raises(self):
        with pytest.raises(ValueError):
            primary_lead_days("LOAN")


class TestCalibrationBuckets:
    """Calibration due 2025-03-31."""

    DUE = date(2025, 3, 31)

    def test_thirty_days_out_fires(self):
        assert milestone_bucket(ObligationType.CALIBRATION, self.DUE, date(2025, 3, 1)) == 30

    def test_fifty_eight_days_out_does_not_fire(self):
        assert milestone_bucket(ObligationType.CALIBRATION, self.DUE, date(2025, 2, 1)) is None

    def test_seven_days_out_fires(self):
        assert milestone_bucket(ObligationType.CALIBRATION, self.DUE, date(2025, 3, 24)) == 7

    def test_one_day_out_fires(self):
        assert milestone_bucket(ObligationType.CALIBRATION, self.DUE, date(2025, 3, 30)) == 1

    def test_between_milestones_is_not_eligible(self):
        for today in (date(2025, 3, 2), date(2025, 3, 23), date(2025, 3, 31)):
            assert is_eligible_day(ObligationType.CALIBRATION, self.DUE, today) is False


class TestWindowBuckets:
    """Rental due 2025-06-10: 7-day milestone plus days 3..0."""

    DUE = date(2025, 6, 10)

    def test_seven_day_milestone(self):
        assert milestone_bucket(ObligationType.RENTAL, self.DUE, date(2025, 6, 3)) == 7

    def test_gap_before_window(self):
        for today in (date(2025, 6, 4), date(2025, 6, 5), date(2025, 6, 6)):
            assert milestone_bucket(ObligationType.RENTAL, self.DUE, today) is None

    def test_every_day_in_window(self):
        buckets = [
            milestone_bucket(ObligationType.MAINTENANCE, self.DUE, self.DUE - timedelta(days=n))
            for n in (3, 2, 1, 0)
        ]
        assert buckets == [3, 2, 1, 0]

    def test_after_due_date_not_eligible(self):
        assert milestone_bucket(ObligationType.RENTAL, self.DUE, date(2025, 6, 11)) is None


class TestScheduleAndUnknown:

    def test_schedule_only_on_due_date(self):
        due = date(2025, 1, 31)
        assert is_eligible_day(ObligationType.SCHEDULE, due, due) is True
        assert is_eligible_day(ObligationType.SCHEDULE, due, date(2025, 1, 30)) is False

    def test_unknown_type_never_eligible(self):
        due = date(2025, 1, 31)
        assert milestone_bucket("LOAN", due, due) is None
        assert is_eligible_day("LOAN", due, due) is False

    def test_missing_due_date_never_eligible(self):
        assert is_eligible_day(ObligationType.SCHEDULE, None, date(2025, 1, 31)) is False

    def test_eligibility_is_deterministic(self):
        args = (ObligationType.CALIBRATION, date(2025, 3, 31), date(2025, 3, 24))
        assert is_eligible_day(*args) == is_eligible_day(*args)


class TestLabels:

    def test_days_until_due_negative_when_overdue(self):
        assert days_until_due(date(2025, 1, 1), date(2025, 1, 4)) == -3

    def test_milestone_labels(self):
        assert milestone_label(30) == "H-30"
        assert milestone_label(7) == "H-7"
        assert milestone_label(3) == "H-3"
        assert milestone_label(0) == "H-0"
        assert milestone_label(-2) == "OVERDUE"
