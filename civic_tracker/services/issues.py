"""
Issue service: loads the issue aggregate, checks capabilities, runs the
domain engines and persists the result.

Every mutation of an issue runs inside ``_locked``, which reads the issue
row with ``SELECT ... FOR UPDATE`` and commits (or rolls back) at the end.
That row lock is the per-issue mutation lock; concurrent votes, comments
and status changes on the same issue are serialised by it.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Union
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import noload
from sqlalchemy.orm.attributes import set_committed_value

from civic_tracker.core.config import settings
from civic_tracker.core.errors import (
    AuthenticationError,
    ConflictError,
    DuplicateVoteError,
    NotFoundError,
    ValidationError,
    translate_store_errors,
)
from civic_tracker.core.metrics import (
    record_issue_created,
    record_status_transition,
    record_vote,
)
from civic_tracker.core.permissions import Action, ensure_allowed
from civic_tracker.core.redis import CacheService, cache_key
from civic_tracker.core.security import Actor
from civic_tracker.models.issues import (
    Issue,
    IssueCategory,
    IssueComment,
    IssueImage,
    IssuePriority,
    IssueStatus,
    IssueVote,
    VoteType,
    location_point,
    utcnow,
)
from civic_tracker.models.users import User
from civic_tracker.schemas.issues import IssueCreate, IssueUpdate
from civic_tracker.services import ranking, status_workflow, voting
from civic_tracker.services.issue_query import (
    IssueFilters,
    IssuePage,
    IssueQuery,
    IssueSort,
    IssueSortField,
    PageRequest,
    SortOrder,
)

logger = logging.getLogger(__name__)

STATS_CACHE_KEY = cache_key("issues", "stats")

TRIAGE_FIELDS = ("priority", "assigned_to_id", "estimated_resolution_date")
ADDRESS_FIELDS = ("street", "area", "city", "state", "pincode", "landmark")

BlobDeleter = Callable[[List[str]], Any]


def _value(member: Any) -> str:
    return member.value if hasattr(member, "value") else str(member)


class IssueService:
    """
    Per-request service wrapping an ``AsyncSession``.

    Args:
        db: session bound to the current request
        cache: optional Redis cache for the statistics summary
        blob_deleter: callable removing blob store objects by key, used when
            an issue is deleted; failures are logged, not raised
        enforce_transitions: apply the status transition table
    """

    def __init__(
        self,
        db: AsyncSession,
        cache: Optional[CacheService] = None,
        blob_deleter: Optional[BlobDeleter] = None,
        enforce_transitions: Optional[bool] = None,
    ):
        self.db = db
        self.cache = cache
        self.blob_deleter = blob_deleter
        self.enforce_transitions = (
            settings.STATUS_TRANSITIONS_ENFORCED
            if enforce_transitions is None
            else enforce_transitions
        )
        self.query = IssueQuery(db)

    # ------------------------------------------------------------------
    # Loading and locking
    # ------------------------------------------------------------------

    async def _load(self, issue_id: UUID, for_update: bool = False) -> Issue:
        stmt = select(Issue).where(Issue.id == issue_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        issue = result.scalar_one_or_none()
        if issue is None:
            raise NotFoundError("Issue not found")
        return issue

    @asynccontextmanager
    async def _locked(self, issue_id: UUID) -> AsyncIterator[Issue]:
        """Yield the row-locked issue; commit on exit, roll back on error."""
        issue = await self._load(issue_id, for_update=True)
        try:
            yield issue
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise ConflictError("Issue was modified concurrently, please retry") from exc
        except Exception:
            await self.db.rollback()
            raise

    async def _invalidate_stats(self) -> None:
        if self.cache is not None:
            await self.cache.delete(STATS_CACHE_KEY)

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    @translate_store_errors
    async def create_issue(self, actor: Actor, payload: IssueCreate) -> Issue:
        """Store a new report owned by ``actor`` with status ``reported``."""
        ensure_allowed(actor, Action.CREATE_ISSUE)
        longitude, latitude = payload.location.coordinates

        issue = Issue(
            title=payload.title,
            description=payload.description,
            category=payload.category,
            priority=payload.priority,
            status=IssueStatus.REPORTED,
            tags=list(payload.tags),
            longitude=longitude,
            latitude=latitude,
            reported_by_id=actor.user_id,
            images=[IssueImage(**image.model_dump()) for image in payload.images],
            **payload.address.model_dump(),
        )

        self.db.add(issue)
        await self.db.commit()
        await self.db.refresh(issue)

        record_issue_created(_value(issue.category))
        await self._invalidate_stats()
        logger.info(
            "Issue created",
            extra={"issue_id": str(issue.id), "category": _value(issue.category)},
        )
        return issue

    @translate_store_errors
    async def get_issue(self, issue_id: UUID, count_view: bool = True) -> Issue:
        """Fetch one issue; each counted read increments ``view_count`` in SQL."""
        issue = await self._load(issue_id)
        if count_view:
            await self.db.execute(
                update(Issue)
                .where(Issue.id == issue_id)
                .values(view_count=Issue.view_count + 1)
            )
            await self.db.commit()
            set_committed_value(issue, "view_count", (issue.view_count or 0) + 1)
        return issue

    @translate_store_errors
    async def list_issues(
        self,
        filters: Optional[IssueFilters] = None,
        sort: Optional[IssueSort] = None,
        page: Optional[PageRequest] = None,
    ) -> IssuePage:
        return await self.query.list_issues(filters, sort, page)

    @translate_store_errors
    async def my_issues(
        self,
        actor: Actor,
        status: Optional[IssueStatus] = None,
        page: Optional[PageRequest] = None,
    ) -> IssuePage:
        """Issues reported by ``actor``, newest first."""
        if not actor.is_authenticated:
            raise AuthenticationError("Not authenticated")
        filters = IssueFilters(status=status, reported_by_id=actor.user_id)
        sort = IssueSort(sort_by=IssueSortField.CREATED_AT, order=SortOrder.DESC)
        return await self.query.list_issues(filters, sort, page)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @translate_store_errors
    async def update_issue(self, actor: Actor, issue_id: UUID, changes: IssueUpdate) -> Issue:
        """
        Apply a partial update.

        Content fields need the reporter or an admin; triage fields need a
        moderator or an admin. A payload mixing both needs both.
        """
        data = changes.model_dump(exclude_unset=True)
        triage = {field: data.pop(field) for field in TRIAGE_FIELDS if field in data}
        if not data and not triage:
            raise ValidationError("No fields to update")

        async with self._locked(issue_id) as issue:
            if data:
                ensure_allowed(actor, Action.UPDATE_ISSUE, issue)
            if triage:
                ensure_allowed(actor, Action.TRIAGE_ISSUE, issue)

            if triage.get("assigned_to_id") is not None:
                assignee = await self.db.get(User, triage["assigned_to_id"])
                if assignee is None:
                    raise NotFoundError("Assignee not found")

            self._apply_content(issue, data)
            for field, value in triage.items():
                setattr(issue, field, value)
            issue.updated_at = utcnow()

        await self.db.refresh(issue)
        logger.info(
            "Issue updated",
            extra={"issue_id": str(issue.id), "fields": sorted([*data, *triage])},
        )
        return issue

    @staticmethod
    def _apply_content(issue: Issue, data: Dict[str, Any]) -> None:
        location = data.pop("location", None)
        if location is not None:
            issue.longitude, issue.latitude = location["coordinates"]
            issue.location = location_point(issue.longitude, issue.latitude)

        address = data.pop("address", None) or {}
        for field in ADDRESS_FIELDS:
            if field in address:
                if field == "city" and not address[field]:
                    raise ValidationError("City is required")
                setattr(issue, field, address[field])

        for field, value in data.items():
            setattr(issue, field, value)

    @translate_store_errors
    async def transition_status(
        self,
        actor: Actor,
        issue_id: UUID,
        new_status: Union[str, IssueStatus],
        comment: Optional[str] = None,
    ) -> Issue:
        """Move an issue through the workflow, recording one history entry."""
        ensure_allowed(actor, Action.TRANSITION_STATUS)
        target = status_workflow.coerce_status(new_status)

        async with self._locked(issue_id) as issue:
            previous = status_workflow.coerce_status(issue.status)
            status_workflow.transition_status(
                issue,
                target,
                changed_by=actor.user_id,
                comment=comment,
                enforce=self.enforce_transitions,
            )

        record_status_transition(previous.value, target.value)
        await self._invalidate_stats()
        logger.info(
            "Issue status changed",
            extra={
                "issue_id": str(issue_id),
                "from_status": previous.value,
                "to_status": target.value,
            },
        )
        return issue

    @translate_store_errors
    async def delete_issue(self, actor: Actor, issue_id: UUID) -> None:
        """Delete an issue and its child rows, then its blobs (best effort)."""
        async with self._locked(issue_id) as issue:
            ensure_allowed(actor, Action.DELETE_ISSUE, issue)
            storage_paths = [image.storage_path for image in issue.images]
            await self.db.delete(issue)

        await self._invalidate_stats()
        logger.info("Issue deleted", extra={"issue_id": str(issue_id)})
        await self._delete_blobs(issue_id, storage_paths)

    async def _delete_blobs(self, issue_id: UUID, storage_paths: List[str]) -> None:
        if not storage_paths or self.blob_deleter is None:
            return
        try:
            await asyncio.to_thread(self.blob_deleter, storage_paths)
        except Exception:
            logger.warning(
                "Failed to delete images for issue %s",
                issue_id,
                exc_info=True,
                extra={"storage_paths": storage_paths},
            )

    @translate_store_errors
    async def cast_vote(
        self, actor: Actor, issue_id: UUID, vote_type: Union[str, VoteType]
    ) -> voting.VoteOutcome:
        """Add or switch ``actor``'s vote under the issue row lock."""
        ensure_allowed(actor, Action.VOTE)
        vote_type = voting.coerce_vote_type(vote_type)

        try:
            async with self._locked(issue_id) as issue:
                outcome = voting.apply_vote(issue, actor.user_id, vote_type)
        except DuplicateVoteError:
            record_vote("duplicate")
            raise

        record_vote(outcome.action)
        logger.info(
            "Vote %s",
            outcome.action,
            extra={
                "issue_id": str(issue_id),
                "vote_type": outcome.vote_type.value,
                "upvotes": outcome.upvotes,
                "downvotes": outcome.downvotes,
            },
        )
        return outcome

    @translate_store_errors
    async def add_comment(self, actor: Actor, issue_id: UUID, text: str) -> IssueComment:
        """Append a comment; comments by admins are flagged official."""
        ensure_allowed(actor, Action.COMMENT)
        text = (text or "").strip()
        if not text:
            raise ValidationError("Comment text is required")
        if len(text) > 500:
            raise ValidationError("Comment cannot exceed 500 characters")

        async with self._locked(issue_id) as issue:
            comment = IssueComment(
                author_id=actor.user_id,
                text=text,
                is_official=actor.is_admin,
                created_at=utcnow(),
            )
            issue.comments.append(comment)

        # The author is rendered with the comment; lazy loads fail under asyncio.
        await self.db.refresh(comment, ["author"])
        logger.info(
            "Comment added",
            extra={"issue_id": str(issue_id), "is_official": comment.is_official},
        )
        return comment

    # ------------------------------------------------------------------
    # Aggregate views
    # ------------------------------------------------------------------

    @translate_store_errors
    async def trending(
        self,
        window: Union[str, ranking.TrendingWindow] = ranking.TrendingWindow.WEEK,
        sort_by: Union[str, ranking.TrendingSort] = ranking.TrendingSort.VOTES,
        limit: int = 10,
        viewer_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> List[ranking.RankedIssue]:
        """Rank issues created inside ``window``; the window is filtered in SQL."""
        now = now or utcnow()
        start = ranking.window_start(window, now)

        # Ranking reads the counters and votes only.
        stmt = select(Issue).options(
            noload(Issue.comments),
            noload(Issue.status_history),
            noload(Issue.images),
        )
        if start is not None:
            stmt = stmt.where(Issue.created_at >= start)
        result = await self.db.execute(stmt)

        ranked = list(
            ranking.rank_issues(
                result.scalars().all(),
                window=window,
                sort_by=sort_by,
                limit=limit,
                now=now,
                viewer_id=viewer_id,
            )
        )
        if ranked:
            # Fill in images and comments for the issues being returned.
            await self.db.execute(
                select(Issue)
                .where(Issue.id.in_([entry.issue.id for entry in ranked]))
                .options(noload(Issue.status_history))
                .execution_options(populate_existing=True)
            )
        return ranked

    @translate_store_errors
    async def stats(self) -> Dict[str, Any]:
        """Issue totals by status, category and priority."""
        if self.cache is None:
            return await self._compute_stats()
        return await self.cache.get_or_set(
            STATS_CACHE_KEY, self._compute_stats, ttl=settings.STATS_CACHE_TTL
        )

    async def _grouped_counts(self, column) -> Dict[str, int]:
        result = await self.db.execute(
            select(column, func.count()).select_from(Issue).group_by(column)
        )
        return {_value(key): count for key, count in result.all()}

    async def _compute_stats(self) -> Dict[str, Any]:
        by_status = await self._grouped_counts(Issue.status)
        by_category = await self._grouped_counts(Issue.category)
        by_priority = await self._grouped_counts(Issue.priority)

        return {
            "total": sum(by_status.values()),
            "by_status": {s.value: by_status.get(s.value, 0) for s in IssueStatus},
            "by_category": sorted(
                (
                    {"category": c.value, "count": by_category[c.value]}
                    for c in IssueCategory
                    if by_category.get(c.value)
                ),
                key=lambda entry: entry["count"],
                reverse=True,
            ),
            "by_priority": {p.value: by_priority.get(p.value, 0) for p in IssuePriority},
        }


async def votes_by_user(db: AsyncSession, voter_id: UUID) -> List[Dict[str, Any]]:
    """Issues ``voter_id`` has voted on, most recent vote first."""
    stmt = (
        select(IssueVote, Issue.title, Issue.status)
        .join(Issue, Issue.id == IssueVote.issue_id)
        .where(IssueVote.voter_id == voter_id)
        .order_by(IssueVote.voted_at.desc())
    )
    result = await db.execute(stmt)
    return [
        {
            "issue_id": vote.issue_id,
            "title": title,
            "status": _value(status),
            "vote_type": vote.vote_type,
            "voted_at": vote.voted_at,
        }
        for vote, title, status in result.all()
    ]


__all__ = ["IssueService", "STATS_CACHE_KEY", "TRIAGE_FIELDS", "votes_by_user"]
