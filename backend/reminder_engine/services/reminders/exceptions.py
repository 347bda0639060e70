"""
Reminder engine error taxonomy.

- ValidationError: bad type / obligation reference. Rejected at creation, never retried.
- TransientStoreError: claim or transaction failure. Reminder keeps its prior state
  and is retried on the next sweep.
- RecipientResolutionError: user / role lookup failed. Isolated per reminder; the
  claim is rolled back so the reminder stays claimable.
- RecurrenceConflict: next occurrence already exists. Treated as success (no-op).
"""


class ReminderEngineError(Exception):
    """Base class for reminder engine errors."""
    pass


class ValidationError(ReminderEngineError):
    """Raised when a reminder request references a bad type or obligation."""
    pass


class ObligationNotFound(ValidationError):
    """Raised when an obligation reference does not exist."""
    pass


class ReminderNotFound(ReminderEngineError):
    """Raised when a reminder id does not exist."""
    pass


class TransientStoreError(ReminderEngineError):
    """Raised when a storage write fails and should be retried later."""
    pass


class RecipientResolutionError(ReminderEngineError):
    """Raised when a user or role cannot be resolved to recipients."""
    pass


class RecurrenceConflict(ReminderEngineError):
    """Raised internally when the next occurrence already exists."""
    pass
