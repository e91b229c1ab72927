"""
Issue service tests against a mocked AsyncSession.
"""
import json
import logging
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from prometheus_client import REGISTRY
from sqlalchemy.exc import OperationalError

from civic_tracker.core.errors import (
    AuthenticationError,
    AuthorizationError,
    DuplicateVoteError,
    IllegalTransitionError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from civic_tracker.core.redis import CacheService
from civic_tracker.core.security import ANONYMOUS
from civic_tracker.models.issues import (
    IssueImage,
    IssuePriority,
    IssueStatus,
    VoteType,
)
from civic_tracker.schemas.issues import IssueCreate, IssueUpdate
from civic_tracker.services.issues import STATS_CACHE_KEY, IssueService
from tests.conftest import NOW, make_issue


class InMemoryRedis:
    def __init__(self):
        self.store = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value
        return True

    async def delete(self, key):
        return 1 if self.store.pop(key, None) is not None else 0


def _session_with(issue):
    """Session mock whose every ``execute`` resolves to ``issue``."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = issue
    db = AsyncMock()
    db.execute.return_value = result
    db.add = MagicMock()
    return db


def _metric(name, labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.mark.asyncio
async def test_create_issue_sets_owner_and_reported_status(citizen):
    db = AsyncMock()
    db.add = MagicMock()
    service = IssueService(db)
    payload = IssueCreate(
        title="Broken streetlight",
        description="The streetlight at the corner has been out for a week",
        category="electricity",
        location={"type": "Point", "coordinates": [-74.006, 40.7128]},
        address={"city": "New York", "pincode": "100001"},
        tags="lighting, safety, lighting",
    )

    issue = await service.create_issue(citizen, payload)

    db.add.assert_called_once_with(issue)
    db.commit.assert_awaited()
    assert issue.reported_by_id == citizen.user_id
    assert issue.status is IssueStatus.REPORTED
    assert issue.priority is IssuePriority.MEDIUM
    assert issue.coordinates == [-74.006, 40.7128]
    assert issue.city == "New York"
    assert issue.tags == ["lighting", "safety"]
    assert (issue.upvotes, issue.downvotes) == (0, 0)


@pytest.mark.asyncio
async def test_create_issue_requires_authentication():
    service = IssueService(AsyncMock())
    payload = IssueCreate(
        title="Broken streetlight",
        description="The streetlight at the corner has been out for a week",
        category="electricity",
        location={"coordinates": [0, 0]},
        address={"city": "Pune"},
    )

    with pytest.raises(AuthorizationError):
        await service.create_issue(ANONYMOUS, payload)


@pytest.mark.asyncio
async def test_get_issue_counts_view():
    issue = make_issue(view_count=4)
    db = _session_with(issue)

    fetched = await IssueService(db).get_issue(issue.id)

    assert fetched.view_count == 5
    assert db.execute.await_count == 2
    db.commit.assert_awaited()


@pytest.mark.asyncio
async def test_get_missing_issue():
    with pytest.raises(NotFoundError) as exc:
        await IssueService(_session_with(None)).get_issue(uuid.uuid4())
    assert exc.value.message == "Issue not found"


@pytest.mark.asyncio
async def test_store_outage_is_translated():
    db = AsyncMock()
    db.execute.side_effect = OperationalError("SELECT", {}, ConnectionRefusedError())

    with pytest.raises(StoreUnavailableError):
        await IssueService(db).get_issue(uuid.uuid4())


@pytest.mark.asyncio
async def test_my_issues_requires_login():
    with pytest.raises(AuthenticationError):
        await IssueService(AsyncMock()).my_issues(ANONYMOUS)


@pytest.mark.asyncio
async def test_cast_vote_commits_under_lock(citizen):
    issue = make_issue()
    db = _session_with(issue)
    before = _metric("app_issue_votes_total", {"outcome": "added"})

    outcome = await IssueService(db).cast_vote(citizen, issue.id, "up")

    assert outcome.action == "added"
    assert issue.upvotes == 1
    db.commit.assert_awaited_once()
    stmt = db.execute.await_args.args[0]
    assert stmt._for_update_arg is not None
    assert _metric("app_issue_votes_total", {"outcome": "added"}) == before + 1


@pytest.mark.asyncio
async def test_duplicate_vote_rolls_back(citizen):
    issue = make_issue()
    db = _session_with(issue)
    service = IssueService(db)
    await service.cast_vote(citizen, issue.id, "down")
    before = _metric("app_issue_votes_total", {"outcome": "duplicate"})

    with pytest.raises(DuplicateVoteError):
        await service.cast_vote(citizen, issue.id, VoteType.DOWN)

    db.rollback.assert_awaited_once()
    assert issue.downvotes == 1
    assert _metric("app_issue_votes_total", {"outcome": "duplicate"}) == before + 1


@pytest.mark.asyncio
async def test_invalid_vote_type_rejected_before_loading(citizen):
    db = _session_with(make_issue())

    with pytest.raises(ValidationError):
        await IssueService(db).cast_vote(citizen, uuid.uuid4(), "meh")

    db.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_citizen_cannot_change_status(citizen):
    issue = make_issue(reported_by_id=citizen.user_id)
    db = _session_with(issue)

    with pytest.raises(AuthorizationError):
        await IssueService(db).transition_status(citizen, issue.id, "in-review")

    db.execute.assert_not_awaited()
    assert issue.status is IssueStatus.REPORTED


@pytest.mark.asyncio
async def test_moderator_changes_status(moderator):
    issue = make_issue()
    db = _session_with(issue)

    updated = await IssueService(db).transition_status(
        moderator, issue.id, "in-review", comment="Assigned to roads team"
    )

    assert updated.status is IssueStatus.IN_REVIEW
    assert updated.status_history[0].status is IssueStatus.REPORTED
    assert updated.status_history[0].changed_by_id == moderator.user_id
    db.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_illegal_transition_rolls_back(moderator):
    issue = make_issue()
    db = _session_with(issue)

    with pytest.raises(IllegalTransitionError):
        await IssueService(db).transition_status(moderator, issue.id, "closed")

    db.rollback.assert_awaited_once()
    db.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_transition_table_can_be_disabled(moderator):
    issue = make_issue()
    db = _session_with(issue)

    await IssueService(db, enforce_transitions=False).transition_status(
        moderator, issue.id, "closed"
    )

    assert issue.status is IssueStatus.CLOSED


@pytest.mark.asyncio
async def test_comment_official_flag_follows_role(citizen, admin):
    issue = make_issue()
    service = IssueService(_session_with(issue))

    by_citizen = await service.add_comment(citizen, issue.id, "  Same problem on my street  ")
    by_admin = await service.add_comment(admin, issue.id, "Crew scheduled for Monday")

    assert by_citizen.text == "Same problem on my street"
    assert by_citizen.is_official is False
    assert by_admin.is_official is True
    assert [c.text for c in issue.comments] == [by_citizen.text, by_admin.text]


@pytest.mark.asyncio
async def test_blank_comment_rejected(citizen):
    with pytest.raises(ValidationError) as exc:
        await IssueService(_session_with(make_issue())).add_comment(citizen, uuid.uuid4(), "   ")
    assert exc.value.message == "Comment text is required"


@pytest.mark.asyncio
async def test_update_content_by_owner(citizen):
    issue = make_issue(reported_by_id=citizen.user_id)
    db = _session_with(issue)

    await IssueService(db).update_issue(
        citizen,
        issue.id,
        IssueUpdate(
            title="Pothole on Main St (deeper now)",
            location={"coordinates": [73.8567, 18.5204]},
            address={"landmark": "Near the bus stop"},
        ),
    )

    assert issue.title == "Pothole on Main St (deeper now)"
    assert issue.coordinates == [73.8567, 18.5204]
    assert issue.landmark == "Near the bus stop"
    assert issue.city == "New York"
    db.refresh.assert_awaited_once_with(issue)


@pytest.mark.asyncio
async def test_triage_fields_need_staff(citizen, moderator):
    issue = make_issue(reported_by_id=citizen.user_id)
    db = _session_with(issue)
    service = IssueService(db)

    with pytest.raises(AuthorizationError):
        await service.update_issue(citizen, issue.id, IssueUpdate(priority="urgent"))
    assert issue.priority is IssuePriority.MEDIUM

    await service.update_issue(moderator, issue.id, IssueUpdate(priority="urgent"))
    assert issue.priority is IssuePriority.URGENT


@pytest.mark.asyncio
async def test_empty_update_rejected(citizen):
    with pytest.raises(ValidationError) as exc:
        await IssueService(AsyncMock()).update_issue(citizen, uuid.uuid4(), IssueUpdate())
    assert exc.value.message == "No fields to update"


@pytest.mark.asyncio
async def test_delete_survives_blob_failure(citizen, caplog):
    issue = make_issue(reported_by_id=citizen.user_id)
    issue.images.append(
        IssueImage(
            filename="pothole.jpg",
            storage_path="issues/abc/pothole.jpg",
            mime_type="image/jpeg",
            size=1024,
        )
    )
    db = _session_with(issue)
    deleter = MagicMock(side_effect=RuntimeError("bucket unreachable"))

    with caplog.at_level(logging.WARNING, logger="civic_tracker.services.issues"):
        await IssueService(db, blob_deleter=deleter).delete_issue(citizen, issue.id)

    db.delete.assert_awaited_once_with(issue)
    db.commit.assert_awaited_once()
    deleter.assert_called_once_with(["issues/abc/pothole.jpg"])
    assert "Failed to delete images" in caplog.text


@pytest.mark.asyncio
async def test_moderator_cannot_delete_others_issue(moderator):
    issue = make_issue()
    db = _session_with(issue)

    with pytest.raises(AuthorizationError):
        await IssueService(db).delete_issue(moderator, issue.id)

    db.delete.assert_not_awaited()
    db.rollback.assert_awaited_once()


def _grouped(rows):
    result = MagicMock()
    result.all.return_value = rows
    return result


@pytest.mark.asyncio
async def test_stats_are_cached_and_invalidated(moderator):
    redis = InMemoryRedis()
    db = AsyncMock()
    db.execute.side_effect = [
        _grouped([(IssueStatus.REPORTED, 3), (IssueStatus.RESOLVED, 1)]),
        _grouped([("water-supply", 1), ("roads-transport", 3)]),
        _grouped([(IssuePriority.MEDIUM, 4)]),
    ]
    service = IssueService(db, cache=CacheService(redis))

    stats = await service.stats()

    assert stats["total"] == 4
    assert stats["by_status"]["reported"] == 3
    assert stats["by_status"]["closed"] == 0
    assert stats["by_category"] == [
        {"category": "roads-transport", "count": 3},
        {"category": "water-supply", "count": 1},
    ]
    assert stats["by_priority"] == {"low": 0, "medium": 4, "high": 0, "urgent": 0}
    assert json.loads(redis.store[STATS_CACHE_KEY]) == stats

    assert await service.stats() == stats
    assert db.execute.await_count == 3

    issue = make_issue()
    db.execute.side_effect = None
    db.execute.return_value = MagicMock(scalar_one_or_none=MagicMock(return_value=issue))
    await service.transition_status(moderator, issue.id, "in-review")

    assert STATS_CACHE_KEY not in redis.store


@pytest.mark.asyncio
async def test_trending_ranks_loaded_issues():
    quiet = make_issue(upvotes=1, created_at=NOW - timedelta(days=1))
    loud = make_issue(upvotes=6, downvotes=1, created_at=NOW - timedelta(days=2))
    result = MagicMock()
    result.scalars.return_value.all.return_value = [quiet, loud]
    db = AsyncMock()
    db.execute.return_value = result

    ranked = await IssueService(db).trending("week", "votes", limit=5, now=NOW)

    assert [r.issue.id for r in ranked] == [loud.id, quiet.id]
    assert ranked[0].net_votes == 5


@pytest.mark.asyncio
async def test_trending_ranks_without_child_rows_then_loads_winners():
    issues = [make_issue(upvotes=n, created_at=NOW - timedelta(hours=n)) for n in range(1, 6)]
    result = MagicMock()
    result.scalars.return_value.all.return_value = issues
    db = AsyncMock()
    db.execute.return_value = result

    ranked = await IssueService(db).trending("all", "votes", limit=2, now=NOW)

    assert [r.issue.upvotes for r in ranked] == [5, 4]
    ranking_stmt, reload_stmt = (call.args[0] for call in db.execute.await_args_list)
    assert len(ranking_stmt._with_options) == 3
    assert reload_stmt.get_execution_options()["populate_existing"] is True
    assert reload_stmt.whereclause.right.value == [r.issue.id for r in ranked]


@pytest.mark.asyncio
async def test_trending_with_nothing_ranked_runs_one_query():
    result = MagicMock()
    result.scalars.return_value.all.return_value = []
    db = AsyncMock()
    db.execute.return_value = result

    assert await IssueService(db).trending("week", now=NOW) == []
    assert db.execute.await_count == 1
