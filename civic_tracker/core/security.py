"""
Authentication and security utilities using JWT.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession

from civic_tracker.core.config import settings
from civic_tracker.core.database import get_db
from civic_tracker.core.errors import AuthenticationError, AuthorizationError
from civic_tracker.core.logging import bind_actor
from civic_tracker.models.users import User, UserRole

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# JWT bearer token schemes
security_scheme = HTTPBearer(auto_error=False)

# JWT configuration
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 30
REFRESH_TOKEN_EXPIRE_DAYS = 7


@dataclass(frozen=True)
class Actor:
    """Verified identity of the caller, or the anonymous actor."""

    user_id: Optional[UUID] = None
    role: Optional[str] = None
    is_active: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None and self.is_active

    @property
    def is_admin(self) -> bool:
        return self.is_authenticated and self.role == UserRole.ADMIN

    @property
    def is_staff(self) -> bool:
        return self.is_authenticated and self.role in UserRole.STAFF_ROLES

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(user_id=user.id, role=user.role, is_active=bool(user.is_active))


ANONYMOUS = Actor()


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash."""
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Dictionary of claims to encode in the token
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.setdefault("type", "access")
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def create_refresh_token(data: dict) -> str:
    """
    Create a JWT refresh token with longer expiration.

    Args:
        data: Dictionary of claims to encode in the token

    Returns:
        Encoded JWT refresh token string
    """
    expires_delta = timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS)
    return create_access_token({**data, "type": "refresh"}, expires_delta)


def issue_tokens(user: User) -> dict:
    """Access/refresh token pair for a user."""
    claims = {"sub": str(user.id), "role": user.role}
    return {
        "access_token": create_access_token(claims),
        "refresh_token": create_refresh_token(claims),
        "token_type": "bearer",
    }


def decode_token(token: str, expected_type: str = "access") -> dict:
    """
    Decode and verify a JWT token.

    Args:
        token: JWT token string
        expected_type: "access" or "refresh"

    Returns:
        Decoded token payload

    Raises:
        AuthenticationError: If token is invalid, expired or of the wrong type
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid authentication credentials")

    if payload.get("type", "access") != expected_type:
        raise AuthenticationError("Invalid token type")
    return payload


def token_subject(payload: dict) -> UUID:
    subject = payload.get("sub")
    if subject is None or payload.get("role") is None:
        raise AuthenticationError("Invalid token payload")
    try:
        return UUID(str(subject))
    except ValueError:
        raise AuthenticationError("Invalid token payload")


async def _load_actor(db: AsyncSession, user_id: UUID) -> Actor:
    # Role and active flag come from the store, so role changes and
    # deactivation take effect before the token expires.
    user = await db.get(User, user_id)
    if user is None:
        return ANONYMOUS
    return Actor.from_user(user)


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """
    Dependency that requires a valid bearer token for an active account.

    Raises:
        AuthenticationError: If the token is missing, invalid, or the account
            no longer exists or is inactive
    """
    if credentials is None:
        raise AuthenticationError("Not authenticated")

    payload = decode_token(credentials.credentials)
    actor = await _load_actor(db, token_subject(payload))
    if not actor.is_authenticated:
        raise AuthenticationError("User not found or inactive")

    bind_actor(str(actor.user_id))
    return actor


async def get_optional_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """Like ``get_current_actor`` but falls back to the anonymous actor."""
    if credentials is None:
        return ANONYMOUS
    try:
        payload = decode_token(credentials.credentials)
        user_id = token_subject(payload)
    except AuthenticationError:
        return ANONYMOUS

    actor = await _load_actor(db, user_id)
    if actor.is_authenticated:
        bind_actor(str(actor.user_id))
        return actor
    return ANONYMOUS


def require_role(*allowed_roles: str):
    """
    Dependency factory for role-based access control.

    Args:
        *allowed_roles: Variable number of role strings that are permitted

    Returns:
        Dependency function that verifies the actor's role

    Example:
        @router.get("/admin-only")
        async def admin_endpoint(actor: Actor = Depends(require_role(UserRole.ADMIN))):
            ...
    """
    async def role_checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed_roles:
            raise AuthorizationError(
                f"Insufficient permissions. Required roles: {allowed_roles}"
            )
        return actor

    return role_checker
