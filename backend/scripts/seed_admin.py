#!/usr/bin/env python3
"""
Admin User Seed Script
Creates an administrator who can enter paper proofs and review submissions.

Usage:
    python -m scripts.seed_admin <email> <password> [first_name] [last_name]

Example:
    python -m scripts.seed_admin reviewer@agency.gov securepassword123 Pat Reviewer
"""
import sys
import os
from uuid import uuid4

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from app.database import SessionLocal, init_db
from app.models.db_models import UserDB, UserRole
from app.auth import hash_password


def create_admin_user(email: str, password: str, first_name: str = None, last_name: str = None) -> bool:
    """Create (or promote) an admin user."""
    email = email.lower()
    init_db()

    db: Session = SessionLocal()
    try:
        existing = db.query(UserDB).filter(UserDB.email == email).first()
        if existing:
            if existing.is_admin:
                print(f"User '{email}' is already an admin.")
                return False
            existing.role = UserRole.ADMIN
            db.commit()
            print(f"Upgraded existing user '{email}' to admin role.")
            return True

        db.add(UserDB(
            id=str(uuid4()),
            email=email,
            first_name=first_name,
            last_name=last_name,
            password_hash=hash_password(password),
            role=UserRole.ADMIN,
        ))
        db.commit()

        print("Admin user created successfully!")
        print(f"  Email: {email}")
        print("  Role: admin")
        return True

    except Exception as e:
        print(f"Error creating admin user: {e}")
        db.rollback()
        return False
    finally:
        db.close()


def main():
    if len(sys.argv) not in (3, 4, 5):
        print(__doc__)
        sys.exit(1)

    email, password = sys.argv[1], sys.argv[2]
    first_name = sys.argv[3] if len(sys.argv) > 3 else None
    last_name = sys.argv[4] if len(sys.argv) > 4 else None

    if len(password) < 8:
        print("Error: Password must be at least 8 characters.")
        sys.exit(1)

    if "@" not in email:
        print("Error: Invalid email format.")
        sys.exit(1)

    success = create_admin_user(email, password, first_name, last_name)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
