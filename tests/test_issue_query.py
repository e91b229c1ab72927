"""Tests for issue filtering, sorting and pagination."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from civic_tracker.core.errors import ValidationError
from civic_tracker.models.issues import IssueCategory, IssueStatus
from civic_tracker.schemas.issues import IssueResponse
from civic_tracker.services.issue_query import (
    GeoRadius,
    IssueFilters,
    IssueQuery,
    IssueSort,
    IssueSortField,
    PageRequest,
    SortOrder,
    build_filter_clauses,
    order_by_clauses,
)
from tests.conftest import make_issue


def _sql(clause) -> str:
    return str(clause.compile(dialect=postgresql.dialect()))


def test_no_filters_means_no_clauses():
    assert build_filter_clauses(IssueFilters()) == []


def test_filters_are_conjunctive():
    clauses = build_filter_clauses(
        IssueFilters(
            status=IssueStatus.REPORTED,
            category=IssueCategory.WATER_SUPPLY,
            city="york",
            search="pothole",
        )
    )

    assert len(clauses) == 4
    assert "issues.status" in _sql(clauses[0])
    assert "ILIKE" in _sql(clauses[2]).upper()
    search_sql = _sql(clauses[3]).lower()
    assert "issues.title" in search_sql and "issues.description" in search_sql
    assert " or " in search_sql


def test_search_escapes_like_wildcards():
    (clause,) = build_filter_clauses(IssueFilters(search="100%_done"))

    params = clause.compile(dialect=postgresql.dialect()).params
    assert "%100\\%\\_done%" in params.values()


def test_radius_filter_uses_meters():
    (clause,) = build_filter_clauses(
        IssueFilters(near=GeoRadius(latitude=40.7128, longitude=-74.006, radius_km=2.5))
    )

    sql = _sql(clause)
    assert "ST_DWithin" in sql
    assert 2500.0 in clause.compile(dialect=postgresql.dialect()).params.values()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"latitude": 91, "longitude": 0, "radius_km": 1},
        {"latitude": 0, "longitude": -181, "radius_km": 1},
        {"latitude": 0, "longitude": 0, "radius_km": 0},
    ],
)
def test_geo_radius_validation(kwargs):
    with pytest.raises(ValidationError):
        GeoRadius(**kwargs)


def test_page_request_math():
    page = PageRequest(page=3, page_size=10)

    assert page.offset == 20
    assert page.total_pages(25) == 3
    assert page.total_pages(30) == 3
    assert page.total_pages(0) == 0


@pytest.mark.parametrize("page, size", [(0, 10), (1, 0), (-2, 5)])
def test_page_request_rejects_non_positive(page, size):
    with pytest.raises(ValidationError):
        PageRequest(page=page, page_size=size)


def test_default_order_is_newest_first_with_id_tiebreak():
    clauses = [_sql(c) for c in order_by_clauses(IssueSort())]

    assert clauses == ["issues.created_at DESC", "issues.id DESC"]


def test_popularity_and_priority_orders():
    popularity = [_sql(c) for c in order_by_clauses(IssueSort(IssueSortField.POPULARITY, SortOrder.ASC))]
    priority = [_sql(c) for c in order_by_clauses(IssueSort(IssueSortField.PRIORITY))]

    assert popularity[0] == "issues.upvotes ASC"
    assert popularity[1:] == ["issues.created_at ASC", "issues.id ASC"]
    assert priority[0].startswith("CASE")
    assert priority[0].endswith("DESC")


class PagingSession:
    """Answers the count query, then slices ``rows`` by the statement's offset and limit."""

    def __init__(self, rows):
        self.rows = rows
        self.calls = 0

    async def execute(self, stmt):
        self.calls += 1
        result = MagicMock()
        if self.calls == 1:
            result.scalar.return_value = len(self.rows)
            return result
        offset = stmt._offset_clause.value
        limit = stmt._limit_clause.value
        result.scalars.return_value.all.return_value = self.rows[offset:offset + limit]
        return result


@pytest.mark.asyncio
async def test_partial_last_page():
    rows = [make_issue() for _ in range(25)]
    query = IssueQuery(PagingSession(rows))

    page = await query.list_issues(page=PageRequest(page=3, page_size=10))

    assert page.total == 25
    assert page.total_pages == 3
    assert page.items == rows[20:]


@pytest.mark.asyncio
async def test_page_past_end_is_empty_with_real_total():
    query = IssueQuery(PagingSession([make_issue() for _ in range(25)]))

    page = await query.list_issues(page=PageRequest(page=4, page_size=10))

    assert page.items == []
    assert page.total == 25


@pytest.mark.asyncio
async def test_empty_store():
    query = IssueQuery(PagingSession([]))

    page = await query.list_issues()

    assert page.items == []
    assert page.total == 0
    assert page.total_pages == 0


def test_coordinates_round_trip_in_geojson_order():
    issue = make_issue(longitude=-74.006, latitude=40.7128)

    body = IssueResponse.from_issue(issue).model_dump(mode="json")

    assert body["location"] == {"type": "Point", "coordinates": [-74.006, 40.7128]}
