"""
Application bootstrap helpers (runs during startup).
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from civic_tracker.core.config import settings
from civic_tracker.core.database import AsyncSessionLocal
from civic_tracker.core.security import hash_password
from civic_tracker.models.users import User, UserRole

logger = logging.getLogger(__name__)


async def _ensure_admin(session: AsyncSession, email: str, password: str, name: str) -> bool:
    """Insert the admin account if no user has ``email``. Returns True when created."""
    stmt = select(User).where(User.email == email)
    result = await session.execute(stmt)
    if result.scalar_one_or_none():
        return False

    session.add(
        User(
            name=name,
            email=email,
            hashed_password=hash_password(password),
            role=UserRole.ADMIN,
            is_active=True,
        )
    )
    logger.info("Seeded admin account %s", email)
    return True


async def ensure_admin_user(session: AsyncSession | None = None) -> bool:
    """
    Ensure the configured bootstrap admin exists.

    Does nothing unless both ``BOOTSTRAP_ADMIN_EMAIL`` and
    ``BOOTSTRAP_ADMIN_PASSWORD`` are set. If a session is not provided, a
    temporary AsyncSession will be created.
    """
    email = settings.BOOTSTRAP_ADMIN_EMAIL.strip().lower()
    password = settings.BOOTSTRAP_ADMIN_PASSWORD
    if not email or not password:
        return False

    name = settings.BOOTSTRAP_ADMIN_NAME

    if session is None:
        async with AsyncSessionLocal() as temp_session:
            created = await _ensure_admin(temp_session, email, password, name)
            await temp_session.commit()
        return created

    created = await _ensure_admin(session, email, password, name)
    await session.commit()
    return created
