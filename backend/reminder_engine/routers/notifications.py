"""
Notification API Routes

Inbox endpoints for the in-app notification channel.
"""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..models.db_models import UserDB, NotificationDB


router = APIRouter(prefix="/notifications", tags=["notifications"])


def serialize_notification(notification: NotificationDB) -> dict:
    return {
        "id": notification.id,
        "title": notification.title,
        "message": notification.message,
        "type": notification.type.value,
        "priority": notification.priority.value,
        "related_id": notification.related_id,
        "reminder_id": notification.reminder_id,
        "is_read": notification.is_read,
        "read_at": notification.read_at.isoformat() if notification.read_at else None,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


@router.get("", response_model=dict)
async def list_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """The caller's notifications, newest first, with the unread count."""
    query = db.query(NotificationDB).filter(NotificationDB.user_id == current_user.id)
    if unread_only:
        query = query.filter(NotificationDB.is_read.is_(False))
    notifications = query.order_by(NotificationDB.created_at.desc(), NotificationDB.id).limit(limit).all()

    unread_count = (
        db.query(NotificationDB)
        .filter(NotificationDB.user_id == current_user.id, NotificationDB.is_read.is_(False))
        .count()
    )

    return {
        "unread_count": unread_count,
        "notifications": [serialize_notification(n) for n in notifications],
    }


@router.patch("/{notification_id}/read", response_model=dict)
async def mark_notification_read(
    notification_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    notification = (
        db.query(NotificationDB)
        .filter(NotificationDB.id == notification_id, NotificationDB.user_id == current_user.id)
        .first()
    )
    if notification is None:
        raise HTTPException(status_code=404, detail="Notification not found")

    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.utcnow()
        db.commit()

    return serialize_notification(notification)


@router.post("/read-all", response_model=dict)
async def mark_all_notifications_read(
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    updated = (
        db.query(NotificationDB)
        .filter(NotificationDB.user_id == current_user.id, NotificationDB.is_read.is_(False))
        .update(
            {NotificationDB.is_read: True, NotificationDB.read_at: datetime.utcnow()},
            synchronize_session=False,
        )
    )
    db.commit()
    return {"updated": updated}
