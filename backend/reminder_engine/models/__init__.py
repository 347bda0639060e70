"""Reminder Engine - Data Models"""
from .db_models import (
    # Enums
    ObligationType, ReminderStatus, RecurrenceFrequency, UserRole,
    NotificationType, NotificationPriority,
    # Tables
    UserDB, ObligationDB, ReminderDB, NotificationDB,
    # Helpers
    resolve_obligation_type,
)

__all__ = [
    "ObligationType", "ReminderStatus", "RecurrenceFrequency", "UserRole",
    "NotificationType", "NotificationPriority",
    "UserDB", "ObligationDB", "ReminderDB", "NotificationDB",
    "resolve_obligation_type",
]
