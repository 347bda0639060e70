"""
Reminder API Routes

User-facing endpoints for reminder creation, listing and acknowledgement,
plus the obligation endpoints the surrounding tracker calls.
"""
from collections import OrderedDict
from datetime import date, datetime
from typing import Optional
import logging
import os

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import get_current_user, is_admin, require_admin
from ..database import get_db
from ..models.db_models import (
    UserDB, ObligationDB, ReminderDB, ObligationType, ReminderStatus, RecurrenceFrequency,
)
from ..services.reminders import (
    ReminderService, ReminderStore, TriggerCache,
    ValidationError, ObligationNotFound, ReminderNotFound, TransientStoreError,
    days_until_due, milestone_label,
)


logger = logging.getLogger(__name__)

router = APIRouter(tags=["reminders"])

# One toast cache per user, local to this process; least recently used
# users are dropped beyond the cap
TRIGGER_CACHE_LIMIT = int(os.getenv("TRIGGER_CACHE_LIMIT", "1024"))
_trigger_caches: "OrderedDict[str, TriggerCache]" = OrderedDict()


def get_trigger_cache(current_user: UserDB = Depends(get_current_user)) -> TriggerCache:
    cache = _trigger_caches.get(current_user.id)
    if cache is None:
        cache = TriggerCache()
        _trigger_caches[current_user.id] = cache
    else:
        _trigger_caches.move_to_end(current_user.id)
    while len(_trigger_caches) > TRIGGER_CACHE_LIMIT:
        _trigger_caches.popitem(last=False)
    return cache


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class CreateReminderRequest(BaseModel):
    """Request to create (or fetch) the reminder for an obligation."""
    type: str = Field(..., description="Obligation type (CALIBRATION, RENTAL, MAINTENANCE, SCHEDULE)")
    obligation_id: str = Field(..., description="ID of the obligation in the tracker")


class UpdateReminderRequest(BaseModel):
    """Only the ACKNOWLEDGED transition is exposed."""
    status: str = Field(..., description="Must be ACKNOWLEDGED")


class RegisterObligationRequest(BaseModel):
    """Obligation reference pushed by the surrounding tracker."""
    kind: str = Field(..., description="Obligation type")
    due_date: Optional[date] = Field(None, description="Due date (SCHEDULE may omit until planned)")
    owner_user_id: Optional[str] = Field(None, description="Direct recipient of reminders")
    title: Optional[str] = None
    item_name: Optional[str] = None
    serial_number: Optional[str] = None
    customer_name: Optional[str] = None
    is_recurring: bool = False
    frequency: Optional[RecurrenceFrequency] = None


# =============================================================================
# SERIALIZATION
# =============================================================================

def _obligation_summary(obligation: Optional[ObligationDB]) -> Optional[dict]:
    if obligation is None:
        return None
    return {
        "id": obligation.id,
        "kind": obligation.kind,
        "title": obligation.title,
        "item_name": obligation.item_name,
        "serial_number": obligation.serial_number,
        "customer_name": obligation.customer_name,
        "due_date": obligation.due_date.isoformat() if obligation.due_date else None,
        "is_recurring": obligation.is_recurring,
        "frequency": obligation.frequency.value if obligation.frequency else None,
        "completed_at": obligation.completed_at.isoformat() if obligation.completed_at else None,
    }


def serialize_reminder(reminder: ReminderDB, today: Optional[date] = None) -> dict:
    today = today or datetime.utcnow().date()
    remaining = days_until_due(reminder.due_date, today)
    return {
        "id": reminder.id,
        "type": reminder.type,
        "obligation_id": reminder.obligation_id,
        "user_id": reminder.user_id,
        "lead_days": reminder.lead_days,
        "due_date": reminder.due_date.isoformat(),
        "reminder_date": reminder.reminder_date.isoformat(),
        "status": reminder.status.value,
        "last_milestone": reminder.last_milestone,
        "last_sent_on": reminder.last_sent_on.isoformat() if reminder.last_sent_on else None,
        "sent_count": reminder.sent_count,
        "acknowledged_at": reminder.acknowledged_at.isoformat() if reminder.acknowledged_at else None,
        "email_sent": reminder.email_sent,
        "email_sent_at": reminder.email_sent_at.isoformat() if reminder.email_sent_at else None,
        "title": reminder.title,
        "message": reminder.message,
        "days_remaining": remaining,
        "milestone": milestone_label(remaining),
        "obligation": _obligation_summary(reminder.obligation),
    }


def _get_visible_reminder(service: ReminderService, reminder_id: str, user: UserDB) -> ReminderDB:
    try:
        reminder = service.get_reminder(reminder_id)
    except ReminderNotFound:
        raise HTTPException(status_code=404, detail="Reminder not found")
    if not is_admin(user) and reminder.user_id != user.id:
        raise HTTPException(status_code=404, detail="Reminder not found")
    return reminder


# =============================================================================
# REMINDER ENDPOINTS
# =============================================================================

@router.post("/reminders", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_reminder(
    request: CreateReminderRequest,
    response: Response,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """
    Create the reminder for an obligation.

    Idempotent: an existing active reminder is returned with 200.
    """
    service = ReminderService(db)
    try:
        reminder, created = service.create_reminder(request.obligation_id, request.type)
    except ObligationNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TransientStoreError as e:
        logger.error(f"Reminder creation failed: {e}")
        raise HTTPException(status_code=503, detail="Reminder store unavailable, retry later")

    if not created:
        response.status_code = status.HTTP_200_OK

    return {"created": created, "reminder": serialize_reminder(reminder)}


@router.get("/reminders", response_model=dict)
async def list_reminders(
    reminder_type: Optional[ObligationType] = Query(None, alias="type"),
    reminder_status: Optional[ReminderStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """List reminders. Admins see every reminder; other users see their own."""
    service = ReminderService(db)
    user_id = None if is_admin(current_user) else current_user.id
    reminders = service.list_reminders(reminder_type=reminder_type, status=reminder_status, user_id=user_id)

    today = datetime.utcnow().date()
    return {
        "count": len(reminders),
        "reminders": [serialize_reminder(r, today) for r in reminders],
    }


@router.get("/reminders/toasts", response_model=dict)
async def get_reminder_toasts(
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
    cache: TriggerCache = Depends(get_trigger_cache),
):
    """
    Reminders to pop up for the caller right now.

    Each reminder is shown at most once per calendar day per process.
    """
    service = ReminderService(db)
    user_id = None if is_admin(current_user) else current_user.id
    today = cache.clock().date()

    toasts = []
    for reminder in service.list_reminders(user_id=user_id):
        if reminder.status == ReminderStatus.ACKNOWLEDGED:
            continue
        if cache.should_display(reminder.id, reminder.due_date, reminder.type, today=today):
            cache.record_display(reminder.id)
            toasts.append(serialize_reminder(reminder, today))

    return {"count": len(toasts), "toasts": toasts}


@router.get("/reminders/{reminder_id}", response_model=dict)
async def get_reminder(
    reminder_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    service = ReminderService(db)
    reminder = _get_visible_reminder(service, reminder_id, current_user)
    return serialize_reminder(reminder)


@router.patch("/reminders/{reminder_id}", response_model=dict)
async def update_reminder(
    reminder_id: str,
    request: UpdateReminderRequest,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """
    Acknowledge a reminder.

    Idempotent: acknowledging twice returns the unchanged reminder.
    Acknowledging a recurring inventory schedule spawns the next occurrence.
    """
    if request.status.upper() != ReminderStatus.ACKNOWLEDGED.value:
        raise HTTPException(status_code=400, detail="Only status ACKNOWLEDGED can be set")

    service = ReminderService(db)
    _get_visible_reminder(service, reminder_id, current_user)

    try:
        reminder, changed, next_reminder = service.acknowledge(reminder_id)
    except TransientStoreError as e:
        logger.error(f"Acknowledge failed: {e}")
        raise HTTPException(status_code=503, detail="Reminder store unavailable, retry later")

    return {
        "changed": changed,
        "reminder": serialize_reminder(reminder),
        "next_reminder": serialize_reminder(next_reminder) if next_reminder else None,
    }


@router.post("/reminders/{reminder_id}/email-sent", response_model=dict)
async def mark_email_sent(
    reminder_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Record that the reminder email went out through an external channel."""
    service = ReminderService(db)
    _get_visible_reminder(service, reminder_id, current_user)
    reminder = service.mark_email_sent(reminder_id)
    return serialize_reminder(reminder)


@router.get("/reminders/{reminder_id}/email-template", response_model=dict)
async def get_email_template(
    reminder_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    service = ReminderService(db)
    _get_visible_reminder(service, reminder_id, current_user)
    return service.email_template(reminder_id)


# =============================================================================
# OBLIGATION ENDPOINTS
# =============================================================================

@router.put("/obligations/{obligation_id}", response_model=dict)
async def register_obligation(
    obligation_id: str,
    request: RegisterObligationRequest,
    db: Session = Depends(get_db),
    _: UserDB = Depends(require_admin),
):
    """Insert or refresh an obligation reference."""
    store = ReminderStore(db)
    try:
        obligation = store.obligations.register(
            obligation_id,
            kind=request.kind,
            due_date=request.due_date,
            owner_user_id=request.owner_user_id,
            title=request.title,
            item_name=request.item_name,
            serial_number=request.serial_number,
            customer_name=request.customer_name,
            is_recurring=request.is_recurring,
            frequency=request.frequency,
        )
    except ValidationError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    try:
        # A moved due date restarts the obligation's active reminders
        store.reschedule_active(obligation)
    except TransientStoreError as e:
        db.rollback()
        logger.error(f"Reschedule failed: {e}")
        raise HTTPException(status_code=503, detail="Reminder store unavailable, retry later")

    db.commit()
    return _obligation_summary(store.obligations.get(obligation_id))


@router.post("/obligations/{obligation_id}/complete", response_model=dict)
async def complete_obligation(
    obligation_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """
    Perform the check for an obligation.

    Acknowledges its active reminders and, for recurring schedules,
    creates the next occurrence.
    """
    service = ReminderService(db)
    try:
        result = service.complete_obligation(obligation_id)
    except ObligationNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TransientStoreError as e:
        logger.error(f"Complete obligation failed: {e}")
        raise HTTPException(status_code=503, detail="Reminder store unavailable, retry later")

    next_reminder = result["next_reminder"]
    return {
        "obligation_id": result["obligation_id"],
        "acknowledged_reminder_ids": result["acknowledged_reminder_ids"],
        "next_reminder": serialize_reminder(next_reminder) if next_reminder else None,
    }
