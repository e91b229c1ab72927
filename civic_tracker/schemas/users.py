"""
Pydantic schemas for authentication and user administration.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from civic_tracker.models.issues import VoteType
from civic_tracker.models.users import UserRole

_PHONE_RE = re.compile(r"^\d{10}$")


def _check_password_strength(value: str) -> str:
    if not (
        re.search(r"[a-z]", value)
        and re.search(r"[A-Z]", value)
        and re.search(r"\d", value)
    ):
        raise ValueError(
            "Password must contain at least one uppercase letter, one lowercase letter and one number"
        )
    return value


def _check_phone(value: Optional[str]) -> Optional[str]:
    if value in (None, ""):
        return None
    if not _PHONE_RE.match(value):
        raise ValueError("Phone number must be 10 digits")
    return value


class RegisterRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _check_password_strength(value)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, value: Optional[str]) -> Optional[str]:
        return _check_phone(value)


class LoginRequest(BaseModel):
    """Login credentials."""

    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    """Token response with access and refresh tokens."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class UserResponse(BaseModel):
    """User response model."""

    id: UUID
    name: str
    email: str
    phone: Optional[str] = None
    role: str
    is_active: bool
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(None, min_length=2, max_length=50)
    phone: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, value: Optional[str]) -> Optional[str]:
        return _check_phone(value)


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, value: str) -> str:
        return _check_password_strength(value)


class UserAdminUpdate(BaseModel):
    """User update request (Admin only)."""

    role: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("role")
    @classmethod
    def validate_role(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in UserRole.ALL_ROLES:
            raise ValueError(f"Invalid role. Must be one of: {UserRole.ALL_ROLES}")
        return value


class VotedIssue(BaseModel):
    issue_id: UUID
    title: str
    status: str
    vote_type: VoteType
    voted_at: datetime


__all__ = [
    "LoginRequest",
    "PasswordChange",
    "ProfileUpdate",
    "RefreshRequest",
    "RegisterRequest",
    "TokenResponse",
    "UserAdminUpdate",
    "UserResponse",
    "VotedIssue",
]
