"""Reminder Engine - API Routers"""
from .reminders import router as reminders_router
from .notifications import router as notifications_router
from .cron import router as cron_router

__all__ = [
    "reminders_router",
    "notifications_router",
    "cron_router",
]
