"""
Trigger Cache

Client/process-local debounce for reminder toasts. Records when a reminder
was displayed so it is shown at most once per calendar day per session.

Advisory only: losing this cache can cause a duplicate in-session toast,
never a missed delivery. ReminderDB / NotificationDB remain the source of
truth.
"""
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, MutableMapping, Optional

from .lead_time import is_eligible_day


TRIGGER_TTL = timedelta(days=2)


class TriggerCache:
    """
    Per-reminder display timestamps with a 2-day TTL.

    Usage:
        cache = TriggerCache(clock=lambda: fixed_now)
        if cache.should_display(reminder.id, reminder.due_date, reminder.type):
            cache.record_display(reminder.id)
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = datetime.now,
        storage: Optional[MutableMapping[str, List[datetime]]] = None,
    ):
        self.clock = clock
        self._triggers: MutableMapping[str, List[datetime]] = storage if storage is not None else {}

    def _read(self) -> MutableMapping[str, List[datetime]]:
        """Purge entries older than the TTL, then return the live mapping."""
        cutoff = self.clock() - TRIGGER_TTL
        for reminder_id in list(self._triggers.keys()):
            kept = [ts for ts in self._triggers[reminder_id] if ts > cutoff]
            if kept:
                self._triggers[reminder_id] = kept
            else:
                del self._triggers[reminder_id]
        return self._triggers

    def displays_for(self, reminder_id: str) -> List[datetime]:
        """Recorded display timestamps still inside the TTL."""
        return list(self._read().get(reminder_id, []))

    def snapshot(self) -> Dict[str, List[datetime]]:
        return {key: list(value) for key, value in self._read().items()}

    def record_display(self, reminder_id: str) -> None:
        triggers = self._read()
        triggers.setdefault(reminder_id, []).append(self.clock())

    def should_display(
        self,
        reminder_id: str,
        due_date: Optional[date],
        reminder_type,
        today: Optional[date] = None,
    ) -> bool:
        """
        True only if today is an eligible day for the reminder AND nothing
        was displayed for this reminder id today.
        """
        today = today or self.clock().date()

        displayed_today = [ts for ts in self.displays_for(reminder_id) if ts.date() == today]
        if displayed_today:
            return False

        return is_eligible_day(reminder_type, due_date, today)
