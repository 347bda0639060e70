"""
Shared fixtures for the reminder engine test suite.

Every test gets a fresh in-memory SQLite schema. The engine is built by
reminder_engine.database from DATABASE_URL, so the URL must be set before
the package is imported.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENABLE_SCHEDULER"] = "false"

import pytest
from datetime import date
from uuid import uuid4

from fastapi.testclient import TestClient

from reminder_engine.database import Base, SessionLocal, engine, get_db
from reminder_engine.models.db_models import ObligationType, UserDB, UserRole
from reminder_engine.services.reminders import ObligationRegistry


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
def db():
    """Fresh schema and session per test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture
def make_user(db):
    def _make_user(role: UserRole = UserRole.USER, email: str = None, name: str = None) -> UserDB:
        user_id = str(uuid4())
        user = UserDB(
            id=user_id,
            email=email or f"{user_id[:8]}@example.com",
            name=name,
            role=role,
        )
        db.add(user)
        db.commit()
        return user
    return _make_user


@pytest.fixture
def make_obligation(db):
    def _make_obligation(
        kind: ObligationType = ObligationType.CALIBRATION,
        due_date: date = date(2025, 3, 31),
        owner=None,
        **kwargs,
    ):
        obligation = ObligationRegistry(db).register(
            kwargs.pop("obligation_id", str(uuid4())),
            kind=kind,
            due_date=due_date,
            owner_user_id=owner.id if owner is not None else None,
            item_name=kwargs.pop("item_name", "Digital Multimeter"),
            serial_number=kwargs.pop("serial_number", "DM-1001"),
            customer_name=kwargs.pop("customer_name", "PT Maju Jaya"),
            **kwargs,
        )
        db.commit()
        return obligation
    return _make_obligation


@pytest.fixture
def admin(make_user):
    return make_user(role=UserRole.ADMIN, email="admin@example.com", name="Admin")


@pytest.fixture
def owner(make_user):
    return make_user(role=UserRole.USER, email="owner@example.com", name="Owner")


# =============================================================================
# HTTP
# =============================================================================

@pytest.fixture
def client(db):
    from reminder_engine.main import app
    from reminder_engine.routers import reminders as reminders_module

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    reminders_module._trigger_caches.clear()
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        reminders_module._trigger_caches.clear()
