"""
Script to create an admin user for the Civic Tracker API.

Usage:
    python scripts/create_admin_user.py

Environment Variables Required:
    DATABASE_URL - PostgreSQL connection string
    REDIS_URL - Redis connection string
    SECRET_KEY - Application secret key
"""

import asyncio
import sys
from getpass import getpass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from civic_tracker.core.database import AsyncSessionLocal
from civic_tracker.core.security import hash_password
from civic_tracker.models.users import User, UserRole


async def create_admin_user():
    """Create an admin user interactively."""
    print("=" * 60)
    print("Civic Tracker Admin User Creation")
    print("=" * 60)
    print()

    email = input("Enter admin email: ").strip().lower()
    if not email:
        print("Error: Email is required")
        sys.exit(1)

    name = input("Enter admin name [default: Administrator]: ").strip() or "Administrator"
    if not 2 <= len(name) <= 50:
        print("Error: Name must be between 2 and 50 characters")
        sys.exit(1)

    # Get password securely
    while True:
        password = getpass("Enter admin password: ")
        password_confirm = getpass("Confirm admin password: ")

        if not password:
            print("Error: Password cannot be empty")
            continue

        if password != password_confirm:
            print("Error: Passwords do not match. Please try again.")
            continue

        if len(password) < 8:
            print("Warning: Password should be at least 8 characters")
            confirm = input("Use this password anyway? [y/N]: ").lower()
            if confirm != "y":
                continue

        break

    print()
    print("Creating admin user...")

    try:
        async with AsyncSessionLocal() as db:
            stmt = select(User).where(User.email == email)
            result = await db.execute(stmt)
            existing = result.scalar_one_or_none()

            if existing:
                if existing.role == UserRole.ADMIN:
                    print(f"Error: Admin '{email}' already exists")
                    sys.exit(1)
                existing.role = UserRole.ADMIN
                existing.is_active = True
                await db.commit()
                print(f"Promoted existing user '{email}' to admin")
                return

            admin = User(
                name=name,
                email=email,
                hashed_password=hash_password(password),
                role=UserRole.ADMIN,
                is_active=True,
            )

            db.add(admin)
            await db.commit()
            await db.refresh(admin)

            print()
            print("Admin user created successfully!")
            print()
            print(f"Name: {admin.name}")
            print(f"Email: {admin.email}")
            print(f"Role: {admin.role}")
            print(f"ID: {admin.id}")
            print()
            print("You can now login at: POST /api/v1/auth/login")
            print()

    except SQLAlchemyError as e:
        print(f"Error creating admin user: {e}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(create_admin_user())
