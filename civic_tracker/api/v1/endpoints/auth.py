"""
Authentication endpoints for registration, login, token refresh, the
current user's profile and user management.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from civic_tracker.core.database import get_db
from civic_tracker.core.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from civic_tracker.core.security import (
    Actor,
    decode_token,
    get_current_actor,
    hash_password,
    issue_tokens,
    require_role,
    token_subject,
    verify_password,
)
from civic_tracker.models.issues import Issue, IssueComment, IssueVote, StatusHistory
from civic_tracker.models.users import User, UserRole
from civic_tracker.schemas.common import collection, success
from civic_tracker.schemas.users import (
    LoginRequest,
    PasswordChange,
    ProfileUpdate,
    RefreshRequest,
    RegisterRequest,
    UserAdminUpdate,
    UserResponse,
    VotedIssue,
)
from civic_tracker.services.issues import votes_by_user

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_user(db: AsyncSession, user_id: UUID) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def _find_by_email(db: AsyncSession, email: str) -> Optional[User]:
    stmt = select(User).where(User.email == email.lower())
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


def _session_body(user: User) -> dict:
    return {"user": UserResponse.model_validate(user), **issue_tokens(user)}


# Auth Endpoints
@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """
    Create a citizen account and return JWT tokens.

    New accounts always get the ``user`` role.
    """
    if await _find_by_email(db, payload.email):
        raise ConflictError("User already exists with this email")

    user = User(
        name=payload.name,
        email=payload.email.lower(),
        hashed_password=hash_password(payload.password),
        phone=payload.phone,
        role=UserRole.USER,
        is_active=True,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError as exc:
        # Lost a race with a concurrent registration for the same email.
        await db.rollback()
        raise ConflictError("User already exists with this email") from exc
    await db.refresh(user)

    logger.info("User registered", extra={"user_id": str(user.id)})
    return success(_session_body(user), "User registered successfully")


@router.post("/login")
async def login(credentials: LoginRequest, db: AsyncSession = Depends(get_db)):
    """
    Authenticate user and return JWT tokens.

    Returns access token (30 min expiry) and refresh token (7 day expiry).
    """
    user = await _find_by_email(db, credentials.email)
    if not user or not verify_password(credentials.password, user.hashed_password):
        raise AuthenticationError("Invalid email or password")
    if not user.is_active:
        raise AuthenticationError("Account is deactivated")

    user.last_login_at = datetime.now(timezone.utc)
    await db.commit()

    return success(_session_body(user), "Login successful")


@router.post("/refresh")
async def refresh_token(payload: RefreshRequest, db: AsyncSession = Depends(get_db)):
    """
    Exchange a refresh token for new access and refresh tokens.

    The account is re-checked, so a deactivated user cannot refresh.
    """
    claims = decode_token(payload.refresh_token, expected_type="refresh")
    user = await db.get(User, token_subject(claims))
    if not user or not user.is_active:
        raise AuthenticationError("User not found or inactive")

    return success(issue_tokens(user))


@router.get("/me")
async def get_current_user_info(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Get current authenticated user information."""
    user = await _get_user(db, actor.user_id)
    return success(UserResponse.model_validate(user))


@router.patch("/me")
async def update_profile(
    changes: ProfileUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Update name and phone of the current user."""
    user = await _get_user(db, actor.user_id)
    for field, value in changes.model_dump(exclude_unset=True).items():
        setattr(user, field, value)
    user.updated_at = datetime.now(timezone.utc)

    await db.commit()
    await db.refresh(user)
    return success(UserResponse.model_validate(user), "Profile updated successfully")


@router.post("/me/password")
async def change_password(
    payload: PasswordChange,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    user = await _get_user(db, actor.user_id)
    if not verify_password(payload.current_password, user.hashed_password):
        raise ValidationError("Current password is incorrect")

    user.hashed_password = hash_password(payload.new_password)
    user.updated_at = datetime.now(timezone.utc)
    await db.commit()
    return success(None, "Password updated successfully")


@router.get("/me/votes")
async def my_votes(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Issues the current user has voted on, with the vote direction."""
    votes = [VotedIssue(**entry) for entry in await votes_by_user(db, actor.user_id)]
    return collection(votes)


# Admin-only User Management Endpoints
@router.get("/users")
async def list_users(
    role: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_role(UserRole.ADMIN)),
):
    """List all users (Admin only)."""
    if role is not None and role not in UserRole.ALL_ROLES:
        raise ValidationError(f"Invalid role. Must be one of: {UserRole.ALL_ROLES}")

    stmt = select(User).order_by(User.created_at.desc())
    if role is not None:
        stmt = stmt.where(User.role == role)
    result = await db.execute(stmt)
    users = [UserResponse.model_validate(u) for u in result.scalars().all()]
    return collection(users)


@router.patch("/users/{user_id}")
async def update_user(
    user_id: UUID,
    user_data: UserAdminUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_role(UserRole.ADMIN)),
):
    """
    Update a user's role or active status (Admin only).

    Admins cannot demote or deactivate themselves.
    """
    user = await _get_user(db, user_id)
    changes = user_data.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise ValidationError("No fields to update")

    if user.id == actor.user_id and (
        changes.get("role", UserRole.ADMIN) != UserRole.ADMIN
        or changes.get("is_active") is False
    ):
        raise ValidationError("Cannot change your own role or active status")

    for field, value in changes.items():
        setattr(user, field, value)
    user.updated_at = datetime.now(timezone.utc)

    await db.commit()
    await db.refresh(user)
    logger.info("User updated", extra={"user_id": str(user.id), "fields": sorted(changes)})
    return success(UserResponse.model_validate(user), "User updated successfully")


async def _has_activity(db: AsyncSession, user_id: UUID) -> bool:
    """True when any issue, vote, comment or history entry references the user."""
    for column in (
        Issue.reported_by_id,
        Issue.assigned_to_id,
        IssueVote.voter_id,
        IssueComment.author_id,
        StatusHistory.changed_by_id,
    ):
        found = await db.scalar(select(column).where(column == user_id).limit(1))
        if found is not None:
            return True
    return False


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_role(UserRole.ADMIN)),
):
    """
    Delete a user (Admin only).

    Users referenced by issues, votes, comments or history entries are
    deactivated instead, so the records they took part in stay intact.
    """
    user = await _get_user(db, user_id)
    if user.id == actor.user_id:
        raise ValidationError("Cannot delete your own account")

    if await _has_activity(db, user.id):
        user.is_active = False
        user.updated_at = datetime.now(timezone.utc)
        message = "User deactivated"
    else:
        await db.delete(user)
        message = "User deleted successfully"

    await db.commit()
    logger.info(message, extra={"user_id": str(user_id)})
    return success(None, message)
