"""
User accounts.
"""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, String, Boolean, DateTime, func
from sqlalchemy.dialects.postgresql import UUID

from civic_tracker.core.database import Base


class UserRole:
    """User roles for RBAC."""

    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"

    ALL_ROLES = [USER, MODERATOR, ADMIN]
    STAFF_ROLES = [MODERATOR, ADMIN]


class User(Base):
    """Citizen, moderator or administrator account."""

    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    phone = Column(String(20))
    role = Column(String(20), nullable=False, default=UserRole.USER, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    last_login_at = Column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"<User(email={self.email}, role={self.role})>"
