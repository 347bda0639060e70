"""
Cron API Routes

Internal endpoint for the external scheduler (or an operator) to trigger
one Due-Reminder sweep.
"""
import os
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Header
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.reminders import DueReminderSweeper


router = APIRouter(prefix="/cron", tags=["cron"])


# =============================================================================
# API KEY VALIDATION
# =============================================================================

CRON_API_KEY = os.getenv("CRON_API_KEY")


async def verify_cron_key(x_api_key: Optional[str] = Header(None)):
    """Verify the cron API key when one is configured."""
    if CRON_API_KEY and x_api_key != CRON_API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return True


# =============================================================================
# SWEEP ENDPOINT (SYSTEM-ONLY)
# =============================================================================

@router.post("/reminders", response_model=dict)
async def run_reminder_sweep(
    force: bool = False,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_cron_key),
):
    """
    Run one reminder sweep.

    force=true bypasses the eligible-day check for operator catch-up;
    reminders already sent today are still skipped.
    """
    sweeper = DueReminderSweeper(db)
    report = sweeper.run(force=force)
    return report.to_dict()
