"""
Reminder Engine - FastAPI Application

Main entry point for the reminder & notification scheduling backend.

Architecture:
- Obligation references → ReminderStore (idempotent create)
- Scheduler / cron → DueReminderSweeper → claim → NotificationFanout
- Acknowledge (SCHEDULE) → RecurrenceExpander → next occurrence
"""
from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routers import reminders_router, notifications_router, cron_router
from .database import init_db
from .scheduler import start_scheduler, stop_scheduler


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database and the sweep scheduler on startup."""
    init_db()
    start_scheduler()
    yield
    stop_scheduler()

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Equipment Tracker Reminder Engine",
    description="""
    Reminder & Notification Scheduling Engine

    Decides when an equipment obligation (calibration, rental return,
    maintenance, inventory check) must be surfaced, to whom, and makes
    sure each reminder fires exactly once per eligible milestone.

    ## Pipeline
    1. **Lead-Time Policy**: obligation type → milestones
    2. **Reminder Store**: idempotent creation, conditional transitions
    3. **Due-Reminder Sweeper**: periodic claim and fan-out
    4. **Recurrence Expander**: next occurrence of recurring checks
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(reminders_router)
app.include_router(notifications_router)
app.include_router(cron_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Equipment Tracker Reminder Engine",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m reminder_engine.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
