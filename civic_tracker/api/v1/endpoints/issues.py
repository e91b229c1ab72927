"""
Issue endpoints: reporting, browsing, voting, comments and the status workflow.
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.encoders import jsonable_encoder
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from civic_tracker.core.config import settings
from civic_tracker.core.database import get_db
from civic_tracker.core.errors import ValidationError
from civic_tracker.core.rate_limiter import limiter
from civic_tracker.core.redis import CacheService, get_redis
from civic_tracker.core.security import Actor, get_current_actor, get_optional_actor
from civic_tracker.models.issues import IssueCategory, IssuePriority, IssueStatus, VoteType
from civic_tracker.schemas.common import paginated, success
from civic_tracker.schemas.issues import (
    CommentCreate,
    CommentResponse,
    IssueCreate,
    IssueDetailResponse,
    IssueResponse,
    IssueUpdate,
    StatusChangeRequest,
    TransitionsResponse,
    TrendingIssueResponse,
    VoteRequest,
    VoteResponse,
)
from civic_tracker.services import status_workflow
from civic_tracker.services.issue_query import (
    GeoRadius,
    IssueFilters,
    IssueSort,
    IssueSortField,
    PageRequest,
    SortOrder,
)
from civic_tracker.services.issues import IssueService
from civic_tracker.services.ranking import TrendingSort, TrendingWindow
from civic_tracker.utils.blob_store import delete_objects

router = APIRouter()


async def get_issue_service(
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis),
) -> IssueService:
    return IssueService(
        db,
        cache=CacheService(redis),
        blob_deleter=delete_objects if settings.S3_BUCKET_NAME else None,
    )


def _page(page: int, limit: int) -> PageRequest:
    return PageRequest(page=page, page_size=limit)


def _near(lat: Optional[float], lng: Optional[float], radius: Optional[float]) -> Optional[GeoRadius]:
    given = [value is not None for value in (lat, lng, radius)]
    if not any(given):
        return None
    if not all(given):
        raise ValidationError("lat, lng and radius must be provided together")
    return GeoRadius(latitude=lat, longitude=lng, radius_km=radius)


@router.get("")
async def list_issues(
    status_filter: Optional[IssueStatus] = Query(None, alias="status"),
    category: Optional[IssueCategory] = Query(None),
    priority: Optional[IssuePriority] = Query(None),
    city: Optional[str] = Query(None, max_length=100),
    search: Optional[str] = Query(None, max_length=200),
    lat: Optional[float] = Query(None),
    lng: Optional[float] = Query(None),
    radius: Optional[float] = Query(None, description="Radius in kilometres"),
    sort_by: IssueSortField = Query(IssueSortField.CREATED_AT),
    sort_order: SortOrder = Query(SortOrder.DESC),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    service: IssueService = Depends(get_issue_service),
    actor: Actor = Depends(get_optional_actor),
):
    """List issues with filters, sorting and pagination."""
    filters = IssueFilters(
        status=status_filter,
        category=category,
        priority=priority,
        city=city,
        search=search,
        near=_near(lat, lng, radius),
    )
    result = await service.list_issues(
        filters, IssueSort(sort_by=sort_by, order=sort_order), _page(page, limit)
    )
    items = [IssueResponse.from_issue(issue, actor.user_id) for issue in result.items]
    return paginated(items, result.total, page, result.total_pages)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_issue(
    payload: IssueCreate,
    service: IssueService = Depends(get_issue_service),
    actor: Actor = Depends(get_current_actor),
):
    """Report a new issue."""
    issue = await service.create_issue(actor, payload)
    return success(IssueDetailResponse.from_issue(issue, actor.user_id), "Issue reported successfully")


@router.get("/stats")
async def issue_stats(service: IssueService = Depends(get_issue_service)):
    """Issue totals by status, category and priority."""
    return success(await service.stats())


@router.get("/trending")
async def trending_issues(
    time_range: TrendingWindow = Query(TrendingWindow.WEEK),
    sort_by: TrendingSort = Query(TrendingSort.VOTES),
    limit: int = Query(settings.TRENDING_DEFAULT_LIMIT, ge=1, le=settings.TRENDING_MAX_LIMIT),
    service: IssueService = Depends(get_issue_service),
    actor: Actor = Depends(get_optional_actor),
):
    """Issues ranked by net votes, recency or controversy within a time window."""
    ranked = await service.trending(time_range, sort_by, limit, viewer_id=actor.user_id)
    issues = [TrendingIssueResponse.from_ranked(entry) for entry in ranked]
    return {
        "success": True,
        "count": len(issues),
        "data": jsonable_encoder(
            {
                "issues": issues,
                "time_range": time_range.value,
                "sort_by": sort_by.value,
                "limit": limit,
            }
        ),
    }


@router.get("/mine")
async def my_issues(
    status_filter: Optional[IssueStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    service: IssueService = Depends(get_issue_service),
    actor: Actor = Depends(get_current_actor),
):
    """Issues reported by the current user."""
    result = await service.my_issues(actor, status_filter, _page(page, limit))
    items = [IssueResponse.from_issue(issue, actor.user_id) for issue in result.items]
    return paginated(items, result.total, page, result.total_pages)


@router.get("/{issue_id}")
async def get_issue(
    issue_id: UUID,
    service: IssueService = Depends(get_issue_service),
    actor: Actor = Depends(get_optional_actor),
):
    """Fetch one issue with its comments and status history. Counts a view."""
    issue = await service.get_issue(issue_id)
    return success(IssueDetailResponse.from_issue(issue, actor.user_id))


@router.patch("/{issue_id}")
async def update_issue(
    issue_id: UUID,
    changes: IssueUpdate,
    service: IssueService = Depends(get_issue_service),
    actor: Actor = Depends(get_current_actor),
):
    issue = await service.update_issue(actor, issue_id, changes)
    return success(IssueDetailResponse.from_issue(issue, actor.user_id), "Issue updated successfully")


@router.delete("/{issue_id}")
async def delete_issue(
    issue_id: UUID,
    service: IssueService = Depends(get_issue_service),
    actor: Actor = Depends(get_current_actor),
):
    await service.delete_issue(actor, issue_id)
    return success(None, "Issue deleted successfully")


@router.post("/{issue_id}/vote")
@limiter.limit(settings.VOTE_RATE_LIMIT)
async def vote_on_issue(
    request: Request,
    issue_id: UUID,
    payload: VoteRequest,
    service: IssueService = Depends(get_issue_service),
    actor: Actor = Depends(get_current_actor),
):
    """Cast or switch the current user's vote."""
    outcome = await service.cast_vote(actor, issue_id, payload.vote_type)
    data = VoteResponse(
        upvotes=outcome.upvotes,
        downvotes=outcome.downvotes,
        total_votes=outcome.total_votes,
        user_vote=VoteType(outcome.vote_type),
    )
    return success(data, outcome.message)


@router.post("/{issue_id}/comments", status_code=status.HTTP_201_CREATED)
async def add_comment(
    issue_id: UUID,
    payload: CommentCreate,
    service: IssueService = Depends(get_issue_service),
    actor: Actor = Depends(get_current_actor),
):
    comment = await service.add_comment(actor, issue_id, payload.text)
    return success(CommentResponse.from_comment(comment), "Comment added successfully")


@router.post("/{issue_id}/status")
async def change_status(
    issue_id: UUID,
    payload: StatusChangeRequest,
    service: IssueService = Depends(get_issue_service),
    actor: Actor = Depends(get_current_actor),
):
    """Move an issue through the workflow (moderators and admins)."""
    issue = await service.transition_status(actor, issue_id, payload.status, payload.comment)
    return success(
        IssueDetailResponse.from_issue(issue, actor.user_id),
        f"Issue status updated to {status_workflow.coerce_status(issue.status).value}",
    )


@router.get("/{issue_id}/transitions")
async def issue_transitions(
    issue_id: UUID,
    service: IssueService = Depends(get_issue_service),
):
    """Statuses the issue may move to next."""
    issue = await service.get_issue(issue_id, count_view=False)
    current = status_workflow.coerce_status(issue.status)
    data = TransitionsResponse(
        status=current,
        allowed=(
            status_workflow.allowed_transitions(current)
            if service.enforce_transitions
            else [s for s in IssueStatus if s is not current]
        ),
        enforced=service.enforce_transitions,
    )
    return success(data)
