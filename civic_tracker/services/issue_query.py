"""
Filtering, sorting and offset pagination of issues.
"""
from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import Any, List, Optional
from uuid import UUID

from geoalchemy2 import Geography
from geoalchemy2.functions import ST_DWithin, ST_MakePoint, ST_SetSRID
from sqlalchemy import case, cast, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from civic_tracker.core.errors import ValidationError, translate_store_errors
from civic_tracker.models.issues import (
    PRIORITY_RANK,
    Issue,
    IssueCategory,
    IssuePriority,
    IssueStatus,
)


class IssueSortField(str, enum.Enum):
    CREATED_AT = "created_at"
    POPULARITY = "popularity"
    PRIORITY = "priority"


class SortOrder(str, enum.Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True, slots=True)
class GeoRadius:
    """Center point plus radius in kilometres. The boundary is inclusive."""

    latitude: float
    longitude: float
    radius_km: float

    def __post_init__(self) -> None:
        if not -90 <= self.latitude <= 90:
            raise ValidationError("Latitude must be between -90 and 90")
        if not -180 <= self.longitude <= 180:
            raise ValidationError("Longitude must be between -180 and 180")
        if self.radius_km <= 0:
            raise ValidationError("Radius must be greater than 0")

    @property
    def radius_meters(self) -> float:
        return self.radius_km * 1000.0


@dataclass(slots=True)
class IssueFilters:
    """Conjunctive filters; ``None`` means "don't filter on this"."""

    status: Optional[IssueStatus] = None
    category: Optional[IssueCategory] = None
    priority: Optional[IssuePriority] = None
    city: Optional[str] = None
    search: Optional[str] = None
    reported_by_id: Optional[UUID] = None
    near: Optional[GeoRadius] = None


@dataclass(frozen=True, slots=True)
class IssueSort:
    sort_by: IssueSortField = IssueSortField.CREATED_AT
    order: SortOrder = SortOrder.DESC


@dataclass(frozen=True, slots=True)
class PageRequest:
    """1-indexed page request."""

    page: int = 1
    page_size: int = 10

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValidationError("page must be 1 or greater")
        if self.page_size < 1:
            raise ValidationError("page size must be 1 or greater")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    def total_pages(self, total: int) -> int:
        return math.ceil(total / self.page_size)


@dataclass(slots=True)
class IssuePage:
    items: List[Issue]
    total: int
    request: PageRequest = field(default_factory=PageRequest)

    @property
    def total_pages(self) -> int:
        return self.request.total_pages(self.total)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _contains(column, text: str):
    """Case-insensitive substring match with LIKE wildcards escaped."""
    return column.ilike(f"%{_escape_like(text)}%", escape="\\")


def _near(radius: GeoRadius):
    center = cast(
        ST_SetSRID(ST_MakePoint(radius.longitude, radius.latitude), 4326),
        Geography,
    )
    return ST_DWithin(Issue.location, center, radius.radius_meters)


def build_filter_clauses(filters: IssueFilters) -> list[Any]:
    clauses: list[Any] = []
    if filters.status:
        clauses.append(Issue.status == filters.status)
    if filters.category:
        clauses.append(Issue.category == filters.category)
    if filters.priority:
        clauses.append(Issue.priority == filters.priority)
    if filters.city:
        clauses.append(_contains(Issue.city, filters.city))
    if filters.search:
        clauses.append(
            or_(
                _contains(Issue.title, filters.search),
                _contains(Issue.description, filters.search),
            )
        )
    if filters.reported_by_id:
        clauses.append(Issue.reported_by_id == filters.reported_by_id)
    if filters.near:
        clauses.append(_near(filters.near))
    return clauses


PRIORITY_RANK_EXPR = case(
    {priority: rank for priority, rank in PRIORITY_RANK.items()},
    value=Issue.priority,
    else_=0,
)


def order_by_clauses(sort: IssueSort) -> list[Any]:
    """Primary key in the requested direction, then creation time and id."""
    direction = (lambda col: col.asc()) if sort.order == SortOrder.ASC else (lambda col: col.desc())

    if sort.sort_by == IssueSortField.POPULARITY:
        primary = [direction(Issue.upvotes)]
    elif sort.sort_by == IssueSortField.PRIORITY:
        primary = [direction(PRIORITY_RANK_EXPR)]
    else:
        primary = []
    return [*primary, direction(Issue.created_at), direction(Issue.id)]


class IssueQuery:
    """Read-side access to issues."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @translate_store_errors
    async def list_issues(
        self,
        filters: Optional[IssueFilters] = None,
        sort: Optional[IssueSort] = None,
        page: Optional[PageRequest] = None,
    ) -> IssuePage:
        """
        Return one page of issues matching every filter, plus the total
        number of matches.

        A page past the end yields an empty ``items`` list with the real total.
        """
        filters = filters or IssueFilters()
        sort = sort or IssueSort()
        page = page or PageRequest()
        clauses = build_filter_clauses(filters)

        count_stmt = select(func.count()).select_from(Issue).where(*clauses)
        total = (await self.db.execute(count_stmt)).scalar() or 0

        stmt = (
            select(Issue)
            .where(*clauses)
            .order_by(*order_by_clauses(sort))
            .offset(page.offset)
            .limit(page.page_size)
        )
        result = await self.db.execute(stmt)
        return IssuePage(items=list(result.scalars().all()), total=total, request=page)


__all__ = [
    "GeoRadius",
    "IssueFilters",
    "IssuePage",
    "IssueQuery",
    "IssueSort",
    "IssueSortField",
    "PageRequest",
    "SortOrder",
    "build_filter_clauses",
    "order_by_clauses",
]
