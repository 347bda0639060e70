"""
Reminder Engine - Periodic Sweep Scheduler

Runs the Due-Reminder Sweeper on an interval inside the API process.
External cron can call POST /cron/reminders instead; both paths are safe to
overlap because the sweep claim is a conditional update.
"""
from datetime import datetime
import logging
import os

from apscheduler.schedulers.background import BackgroundScheduler

from .database import SessionLocal
from .services.reminders import DueReminderSweeper


logger = logging.getLogger(__name__)

# Configuration
ENABLE_SCHEDULER = os.getenv("ENABLE_SCHEDULER", "false").lower() in ("1", "true", "yes")
SWEEP_INTERVAL_MINUTES = int(os.getenv("REMINDER_SWEEP_INTERVAL_MINUTES", "288"))  # 5x daily
SCHEDULER_TIMEZONE = os.getenv("SCHEDULER_TIMEZONE", "UTC")

SWEEP_JOB_ID = "reminder_sweep"

# Prevents the scheduler from starting more than once (reload, repeated imports)
_scheduler = None


def start_scheduler(enabled: bool = ENABLE_SCHEDULER):
    """
    Start the background sweep job.

    - Respects ENABLE_SCHEDULER
    - No-op if already running
    """
    global _scheduler

    if not enabled:
        logger.info("Reminder scheduler disabled (ENABLE_SCHEDULER=false)")
        return None

    if _scheduler is not None:
        logger.info("Reminder scheduler already running, skipping initialization")
        return _scheduler

    logger.info("Starting reminder scheduler...")

    _scheduler = BackgroundScheduler(timezone=SCHEDULER_TIMEZONE)
    _scheduler.add_job(
        run_reminder_sweep,
        trigger="interval",
        minutes=SWEEP_INTERVAL_MINUTES,
        id=SWEEP_JOB_ID,
        replace_existing=True,
        max_instances=1,      # No overlapping runs in this process
        coalesce=True,        # Merge missed runs if the server was down
    )
    _scheduler.start()

    logger.info(f"Reminder scheduler started: sweep every {SWEEP_INTERVAL_MINUTES} minutes")
    return _scheduler


def stop_scheduler():
    global _scheduler

    if _scheduler is None:
        return
    _scheduler.shutdown(wait=False)
    _scheduler = None
    logger.info("Reminder scheduler stopped")


def run_reminder_sweep() -> dict:
    """Job body: one sweep in its own session."""
    logger.info(f"Running scheduled reminder sweep at {datetime.utcnow():%Y-%m-%d %H:%M:%S}")

    db = SessionLocal()
    try:
        report = DueReminderSweeper(db).run()
        return report.to_dict()
    except Exception as e:
        logger.error(f"Scheduled reminder sweep failed: {e}")
        raise
    finally:
        db.close()
