"""
Reminder Engine - SQLAlchemy ORM Models
Persistent storage for obligation references, reminders and notifications
"""
from datetime import datetime
from enum import Enum
from typing import Optional
from sqlalchemy import (
    Column, String, Integer, DateTime, Text, ForeignKey, Enum as SQLEnum,
    Boolean, Date, Index, UniqueConstraint, text,
)
from sqlalchemy.orm import relationship
from ..database import Base


# =============================================================================
# ENUMS
# =============================================================================

class ObligationType(str, Enum):
    """Kinds of trackable obligations. Closed set - never compare raw strings."""
    CALIBRATION = "CALIBRATION"
    RENTAL = "RENTAL"
    MAINTENANCE = "MAINTENANCE"
    SCHEDULE = "SCHEDULE"


class ReminderStatus(str, Enum):
    """Reminder lifecycle: PENDING -> SENT -> ACKNOWLEDGED."""
    PENDING = "PENDING"
    SENT = "SENT"
    ACKNOWLEDGED = "ACKNOWLEDGED"


class RecurrenceFrequency(str, Enum):
    """Recurrence units for recurring obligations (inventory checks)."""
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class UserRole(str, Enum):
    """Roles held by users of the surrounding tracker."""
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    USER = "USER"


class NotificationType(str, Enum):
    """Notification categories emitted by the reminder engine."""
    CALIBRATION_REMINDER = "CALIBRATION_REMINDER"
    RENTAL_DUE_REMINDER = "RENTAL_DUE_REMINDER"
    MAINTENANCE_REMINDER = "MAINTENANCE_REMINDER"
    INVENTORY_SCHEDULE = "INVENTORY_SCHEDULE"


class NotificationPriority(str, Enum):
    """Priority used by clients for polling and push decisions."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Explicit mapping tables (no string comparison on obligation kinds)
NOTIFICATION_TYPE_BY_OBLIGATION = {
    ObligationType.CALIBRATION: NotificationType.CALIBRATION_REMINDER,
    ObligationType.RENTAL: NotificationType.RENTAL_DUE_REMINDER,
    ObligationType.MAINTENANCE: NotificationType.MAINTENANCE_REMINDER,
    ObligationType.SCHEDULE: NotificationType.INVENTORY_SCHEDULE,
}

NOTIFICATION_PRIORITY_BY_TYPE = {
    NotificationType.RENTAL_DUE_REMINDER: NotificationPriority.MEDIUM,
    NotificationType.CALIBRATION_REMINDER: NotificationPriority.MEDIUM,
    NotificationType.MAINTENANCE_REMINDER: NotificationPriority.MEDIUM,
    NotificationType.INVENTORY_SCHEDULE: NotificationPriority.LOW,
}


def resolve_obligation_type(value) -> Optional[ObligationType]:
    """Coerce a stored type tag into ObligationType; None when unknown."""
    if isinstance(value, ObligationType):
        return value
    try:
        return ObligationType(value)
    except ValueError:
        return None


# =============================================================================
# EXTERNAL COLLABORATOR VIEWS
# =============================================================================

class UserDB(Base):
    """Local view of the tracker's user directory (recipients only)."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.USER, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class ObligationDB(Base):
    """
    Read-only reference to an external obligation (calibration expiry,
    rental return, maintenance window, inventory check).

    Pushed in by the surrounding tracker. The engine only creates rows here
    when expanding a recurring obligation into its next occurrence.
    """
    __tablename__ = "obligation_refs"
    __table_args__ = (
        # One occurrence per lineage per due date - guards recurrence expansion
        UniqueConstraint("lineage_id", "due_date", name="uq_obligation_lineage_due"),
    )

    id = Column(String(36), primary_key=True)
    kind = Column(String(20), nullable=False, index=True)  # ObligationType value
    title = Column(String(255), nullable=True)

    # Message context (item / customer the obligation is about)
    item_name = Column(String(255), nullable=True)
    serial_number = Column(String(100), nullable=True)
    customer_name = Column(String(255), nullable=True)

    # Due date may be NULL only for SCHEDULE before its first computation
    due_date = Column(Date, nullable=True)
    owner_user_id = Column(String(36), nullable=True, index=True)

    # Recurrence
    is_recurring = Column(Boolean, default=False)
    frequency = Column(SQLEnum(RecurrenceFrequency), nullable=True)
    lineage_id = Column(String(36), nullable=False, index=True)  # First occurrence's id
    previous_id = Column(String(36), nullable=True)

    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    reminders = relationship("ReminderDB", back_populates="obligation")


# =============================================================================
# REMINDER ENGINE MODELS
# =============================================================================

class ReminderDB(Base):
    """
    The scheduling unit: one obligation-milestone-cycle.

    Mutated only by the sweeper (claim -> SENT) and by acknowledgement.
    Once ACKNOWLEDGED the row is frozen.
    """
    __tablename__ = "reminders"
    __table_args__ = (
        # At most one active reminder per (obligation, milestone lead time)
        Index(
            "uq_reminders_active_milestone",
            "obligation_id",
            "lead_days",
            unique=True,
            sqlite_where=text("status != 'ACKNOWLEDGED'"),
            postgresql_where=text("status != 'ACKNOWLEDGED'"),
        ),
        Index("ix_reminders_status_date", "status", "reminder_date"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    type = Column(String(20), nullable=False, index=True)  # ObligationType value
    obligation_id = Column(String(36), ForeignKey("obligation_refs.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), nullable=True, index=True)  # Direct (non-role) recipient

    # Schedule
    lead_days = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False)
    reminder_date = Column(Date, nullable=False)  # due_date - lead_days

    # State machine
    status = Column(SQLEnum(ReminderStatus), nullable=False, default=ReminderStatus.PENDING)
    last_milestone = Column(Integer, nullable=True)  # Day-count bucket of the last claim
    last_sent_on = Column(Date, nullable=True)       # Calendar day of the last claim
    sent_count = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)  # Optimistic concurrency token
    acknowledged_at = Column(DateTime, nullable=True)

    # Secondary delivery channel (independent of status)
    email_sent = Column(Boolean, nullable=False, default=False)
    email_sent_at = Column(DateTime, nullable=True)

    # Content
    title = Column(String(255), nullable=True)
    message = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    obligation = relationship("ObligationDB", back_populates="reminders")
    notifications = relationship("NotificationDB", back_populates="reminder")


class NotificationDB(Base):
    """
    A delivered message. Derived from a reminder claim - never the source
    of truth for delivery (ReminderDB.status is).
    """
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(SQLEnum(NotificationType), nullable=False)
    priority = Column(SQLEnum(NotificationPriority), nullable=False, default=NotificationPriority.LOW)

    # Correlation - all notifications of one fan-out share related_id
    related_id = Column(String(36), nullable=True, index=True)  # Obligation id
    reminder_id = Column(String(36), ForeignKey("reminders.id", ondelete="SET NULL"), nullable=True, index=True)

    # Read state
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Relationships
    reminder = relationship("ReminderDB", back_populates="notifications")
