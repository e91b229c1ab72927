"""
Trending and controversy ranking over issue vote aggregates.

Scores are derived on every call and never stored. The window filter is
applied before scoring and sorting; ``limit`` truncates after sorting.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from itertools import islice
from typing import Callable, Iterable, Iterator, Optional, Union
from uuid import UUID

from civic_tracker.core.errors import ValidationError
from civic_tracker.models.issues import Issue, VoteType, utcnow
from civic_tracker.services.voting import user_vote


class TrendingWindow(str, enum.Enum):
    WEEK = "week"
    MONTH = "month"
    ALL = "all"


class TrendingSort(str, enum.Enum):
    VOTES = "votes"
    RECENT = "recent"
    NEWEST = "newest"
    CONTROVERSIAL = "controversial"


WINDOW_SPANS: dict[TrendingWindow, Optional[timedelta]] = {
    TrendingWindow.WEEK: timedelta(days=7),
    TrendingWindow.MONTH: timedelta(days=30),
    TrendingWindow.ALL: None,
}


@dataclass(frozen=True, slots=True)
class RankedIssue:
    """An issue together with the scores it was ranked by."""

    issue: Issue
    votes_total: int
    net_votes: int
    controversy_score: float
    user_vote: Optional[VoteType] = None


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def window_start(
    window: Union[str, TrendingWindow], now: Optional[datetime] = None
) -> Optional[datetime]:
    """Earliest creation time inside ``window``, or None for ``all``."""
    span = WINDOW_SPANS[_coerce(TrendingWindow, window, "time range")]
    if span is None:
        return None
    return _aware(now or utcnow()) - span


def controversy_score(upvotes: int, downvotes: int) -> float:
    """
    Balance times volume: ``min/max * (up + down)``.

    Zero unless both sides have votes. 10/10 scores 20.0, 2/2 scores 4.0,
    20/1 scores about 1.05.
    """
    if upvotes <= 0 or downvotes <= 0:
        return 0.0
    return (min(upvotes, downvotes) / max(upvotes, downvotes)) * (upvotes + downvotes)


def score_issue(issue: Issue, viewer_id: Optional[UUID] = None) -> RankedIssue:
    up = issue.upvotes or 0
    down = issue.downvotes or 0
    return RankedIssue(
        issue=issue,
        votes_total=up + down,
        net_votes=up - down,
        controversy_score=controversy_score(up, down),
        user_vote=user_vote(issue, viewer_id),
    )


def _created(ranked: RankedIssue) -> datetime:
    return _aware(ranked.issue.created_at)


_SORT_KEYS: dict[TrendingSort, Callable[[RankedIssue], tuple]] = {
    TrendingSort.VOTES: lambda r: (r.net_votes, r.issue.upvotes or 0, _created(r)),
    TrendingSort.RECENT: lambda r: (_created(r),),
    TrendingSort.NEWEST: lambda r: (_created(r),),
    TrendingSort.CONTROVERSIAL: lambda r: (r.controversy_score, r.votes_total, _created(r)),
}


def _coerce(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {label} '{value}'. Must be one of: {allowed}")


def rank_issues(
    issues: Iterable[Issue],
    window: Union[str, TrendingWindow] = TrendingWindow.WEEK,
    sort_by: Union[str, TrendingSort] = TrendingSort.VOTES,
    limit: int = 10,
    now: Optional[datetime] = None,
    viewer_id: Optional[UUID] = None,
) -> Iterator[RankedIssue]:
    """
    Rank ``issues`` for the trending view.

    Arguments are validated immediately; the ranking itself is produced
    lazily and must be recomputed for a fresh result.

    Args:
        issues: candidate issues (may already be pre-filtered by the store)
        window: creation-time window relative to ``now``
        sort_by: ``votes``, ``recent``/``newest`` or ``controversial``
        limit: maximum number of results
        now: reference time, defaults to the current UTC time
        viewer_id: when given, each result carries that user's vote direction

    Raises:
        ValidationError: unknown window or sort key, or a negative limit
    """
    start = window_start(window, now)
    key = _SORT_KEYS[_coerce(TrendingSort, sort_by, "sort")]
    if limit < 0:
        raise ValidationError("limit must not be negative")

    def _ranked() -> Iterator[RankedIssue]:
        candidates = [
            score_issue(issue, viewer_id)
            for issue in issues
            if start is None or _aware(issue.created_at) >= start
        ]
        candidates.sort(key=key, reverse=True)
        yield from islice(candidates, limit)

    return _ranked()


__all__ = [
    "RankedIssue",
    "TrendingSort",
    "TrendingWindow",
    "WINDOW_SPANS",
    "controversy_score",
    "rank_issues",
    "score_issue",
    "window_start",
]
