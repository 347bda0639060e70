#!/usr/bin/env python3
"""
Admin User Seed Script
Creates (or promotes) an admin user who receives every role-based reminder,
and prints a bearer token for calling the API.

Usage:
    python -m scripts.seed_admin <email> [name]

Example:
    python -m scripts.seed_admin admin@equipment-tracker.local "Lab Admin"
"""
import sys
import os
from uuid import uuid4

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from reminder_engine.database import SessionLocal, init_db
from reminder_engine.models.db_models import UserDB, UserRole
from reminder_engine.auth import create_access_token


def create_admin_user(email: str, name: str = None) -> bool:
    """Create an admin user in the database."""
    # Ensure tables exist
    init_db()

    db: Session = SessionLocal()
    try:
        user = db.query(UserDB).filter(UserDB.email == email).first()

        if user is not None:
            if user.role == UserRole.ADMIN:
                print(f"User '{email}' is already an admin.")
            else:
                user.role = UserRole.ADMIN
                db.commit()
                print(f"Upgraded existing user '{email}' to admin role.")
        else:
            user = UserDB(
                id=str(uuid4()),
                email=email,
                name=name,
                role=UserRole.ADMIN,
            )
            db.add(user)
            db.commit()
            print("Admin user created successfully!")
            print(f"  Email: {email}")
            print(f"  Name: {name or '-'}")

        print(f"  Token: {create_access_token(user.id, user.email, UserRole.ADMIN.value)}")
        return True

    except Exception as e:
        print(f"Error creating admin user: {e}")
        db.rollback()
        return False
    finally:
        db.close()


def main():
    if len(sys.argv) not in (2, 3):
        print(__doc__)
        sys.exit(1)

    email = sys.argv[1]
    name = sys.argv[2] if len(sys.argv) == 3 else None

    if "@" not in email:
        print("Error: Invalid email format.")
        sys.exit(1)

    success = create_admin_user(email, name)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
