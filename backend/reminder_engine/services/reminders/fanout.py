"""
Notification Fan-out

Delivers one logical alert to a single user or to every current holder of a
role, as separate NotificationDB rows sharing the same related_id.

Rows are only added to the session here. The caller commits them in the
same transaction as the reminder claim, so either both persist or neither.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Union
from uuid import uuid4
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import (
    UserDB, ObligationDB, ReminderDB, NotificationDB, UserRole,
    NOTIFICATION_TYPE_BY_OBLIGATION, NOTIFICATION_PRIORITY_BY_TYPE,
    resolve_obligation_type,
)
from .exceptions import RecipientResolutionError
from .messages import milestone_message


logger = logging.getLogger(__name__)


# =============================================================================
# RECIPIENTS
# =============================================================================

@dataclass(frozen=True)
class UserRecipient:
    """Deliver to exactly one user."""
    user_id: str


@dataclass(frozen=True)
class RoleRecipient:
    """Deliver to every current holder of a role."""
    role: UserRole


Recipient = Union[UserRecipient, RoleRecipient]


class RecipientDirectory:
    """
    Narrow view over the external user directory.

    Role membership is resolved fresh on every call - never cached - so a
    user who gains a role later does not receive past notifications.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: str) -> UserDB:
        try:
            user = self.db.get(UserDB, user_id)
        except SQLAlchemyError as e:
            raise RecipientResolutionError(f"User lookup failed for {user_id}: {e}") from e
        if user is None:
            raise RecipientResolutionError(f"User {user_id} not found")
        return user

    def holders_of(self, role: UserRole) -> List[UserDB]:
        try:
            users = (
                self.db.query(UserDB)
                .filter(UserDB.role == role)
                .order_by(UserDB.id)
                .all()
            )
        except SQLAlchemyError as e:
            raise RecipientResolutionError(f"Role lookup failed for {role.value}: {e}") from e
        if not users:
            logger.warning(f"No users hold role {role.value}")
        return users


# =============================================================================
# FAN-OUT
# =============================================================================

class NotificationFanout:
    """Creates one NotificationDB per resolved recipient."""

    def __init__(self, db: Session, directory: Optional[RecipientDirectory] = None):
        self.db = db
        self.directory = directory or RecipientDirectory(db)

    def resolve(self, recipient: Recipient) -> List[UserDB]:
        if isinstance(recipient, UserRecipient):
            return [self.directory.get_user(recipient.user_id)]
        if isinstance(recipient, RoleRecipient):
            return self.directory.holders_of(recipient.role)
        raise RecipientResolutionError(f"Unsupported recipient {recipient!r}")

    def fan_out(
        self,
        reminder: ReminderDB,
        recipient: Recipient,
        title: str,
        message: str,
    ) -> List[NotificationDB]:
        """
        Add one notification per recipient, all sharing related_id
        (the obligation id). Returns the new rows (not yet committed).
        """
        users = self.resolve(recipient)

        notification_type = NOTIFICATION_TYPE_BY_OBLIGATION[resolve_obligation_type(reminder.type)]
        priority = NOTIFICATION_PRIORITY_BY_TYPE[notification_type]
        created_at = datetime.utcnow()

        notifications = []
        for user in users:
            notification = NotificationDB(
                id=str(uuid4()),
                user_id=user.id,
                title=title,
                message=message,
                type=notification_type,
                priority=priority,
                related_id=reminder.obligation_id,
                reminder_id=reminder.id,
                is_read=False,
                created_at=created_at,
            )
            self.db.add(notification)
            notifications.append(notification)

        return notifications

    def deliver_reminder(
        self,
        reminder: ReminderDB,
        obligation: ObligationDB,
        days_remaining: int,
    ) -> List[NotificationDB]:
        """
        Sweeper recipient policy: every ADMIN, plus the reminder's direct
        recipient when that user is not already an admin.

        An empty admin role is fine as long as someone is notified.
        """
        title, message = milestone_message(obligation, days_remaining)

        admin_notifications = self.fan_out(
            reminder,
            RoleRecipient(UserRole.ADMIN),
            title=f"[ADMIN] {title}",
            message=message,
        )
        admin_ids = {n.user_id for n in admin_notifications}

        user_notifications = []
        if reminder.user_id and reminder.user_id not in admin_ids:
            user_notifications = self.fan_out(
                reminder,
                UserRecipient(reminder.user_id),
                title=f"[USER] {title}",
                message=message,
            )

        notifications = admin_notifications + user_notifications
        if not notifications:
            raise RecipientResolutionError(f"Reminder {reminder.id} has no recipients")
        logger.info(
            f"Fanned out reminder {reminder.id}: {len(admin_notifications)} admin, "
            f"{len(user_notifications)} user notification(s)"
        )
        return notifications
