"""Tests for application bootstrap helpers."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from civic_tracker.bootstrap import ensure_admin_user
from civic_tracker.core.config import settings
from civic_tracker.core.security import verify_password
from civic_tracker.models.users import UserRole


@pytest.fixture
def admin_settings(monkeypatch):
    monkeypatch.setattr(settings, "BOOTSTRAP_ADMIN_EMAIL", " Admin@Example.com ")
    monkeypatch.setattr(settings, "BOOTSTRAP_ADMIN_PASSWORD", "Admin123")
    monkeypatch.setattr(settings, "BOOTSTRAP_ADMIN_NAME", "City Admin")


@pytest.mark.asyncio
async def test_ensure_admin_user_inserts_missing_admin(admin_settings):
    session = AsyncMock()
    result_missing = MagicMock()
    result_missing.scalar_one_or_none.return_value = None
    session.execute.return_value = result_missing
    session.add = MagicMock()

    created = await ensure_admin_user(session=session)

    assert created is True
    session.add.assert_called_once()
    admin = session.add.call_args.args[0]
    assert admin.email == "admin@example.com"
    assert admin.name == "City Admin"
    assert admin.role == UserRole.ADMIN
    assert verify_password("Admin123", admin.hashed_password)
    session.commit.assert_awaited()


@pytest.mark.asyncio
async def test_ensure_admin_user_skips_existing_account(admin_settings):
    session = AsyncMock()
    result_existing = MagicMock()
    result_existing.scalar_one_or_none.return_value = object()
    session.execute.return_value = result_existing
    session.add = MagicMock()

    created = await ensure_admin_user(session=session)

    assert created is False
    session.add.assert_not_called()
    session.commit.assert_awaited()


@pytest.mark.asyncio
async def test_ensure_admin_user_noop_without_configuration(monkeypatch):
    monkeypatch.setattr(settings, "BOOTSTRAP_ADMIN_EMAIL", "")
    session = AsyncMock()

    assert await ensure_admin_user(session=session) is False
    session.execute.assert_not_called()
