"""
Voting engine: one active vote per user per issue, changeable direction,
with redundant up/down counters kept equal to the voter entries.

The functions here mutate an ``Issue`` in memory only. Persisting the issue,
and holding the per-issue lock while doing so, is ``IssueService``'s job.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union
from uuid import UUID

from civic_tracker.core.errors import DuplicateVoteError, ValidationError, VoteInvariantError
from civic_tracker.models.issues import Issue, IssueVote, VoteType, utcnow

_COUNTER_FOR = {
    VoteType.UP: "upvotes",
    VoteType.DOWN: "downvotes",
}


@dataclass(slots=True)
class VoteOutcome:
    """Result of a successful ``apply_vote`` call."""

    action: str  # "added" or "switched"
    vote_type: VoteType
    previous_vote_type: Optional[VoteType]
    upvotes: int
    downvotes: int

    @property
    def total_votes(self) -> int:
        return self.upvotes + self.downvotes

    @property
    def message(self) -> str:
        if self.action == "switched":
            return f"Vote changed to {self.vote_type.value}"
        return f"Vote {self.vote_type.value} recorded"


def coerce_vote_type(value: Union[str, VoteType]) -> VoteType:
    try:
        return VoteType(value)
    except ValueError:
        raise ValidationError('Vote type must be "up" or "down"')


def find_vote(issue: Issue, voter_id: UUID) -> Optional[IssueVote]:
    for vote in issue.votes:
        if vote.voter_id == voter_id:
            return vote
    return None


def user_vote(issue: Issue, voter_id: Optional[UUID]) -> Optional[VoteType]:
    """Current vote direction of ``voter_id`` on ``issue``, if any."""
    if voter_id is None:
        return None
    vote = find_vote(issue, voter_id)
    return VoteType(vote.vote_type) if vote else None


def tally(issue: Issue) -> tuple[int, int]:
    """Count (up, down) from the voter entries themselves."""
    up = sum(1 for vote in issue.votes if VoteType(vote.vote_type) is VoteType.UP)
    return up, len(issue.votes) - up


def check_vote_invariant(issue: Issue) -> None:
    """Raise ``VoteInvariantError`` if the counters drifted from the voter list."""
    up, down = tally(issue)
    if issue.upvotes != up or issue.downvotes != down:
        raise VoteInvariantError(
            f"Vote counters out of sync for issue {issue.id}: "
            f"stored {issue.upvotes}/{issue.downvotes}, counted {up}/{down}"
        )


def _bump(issue: Issue, vote_type: VoteType, delta: int) -> None:
    attr = _COUNTER_FOR[vote_type]
    setattr(issue, attr, (getattr(issue, attr) or 0) + delta)


def apply_vote(
    issue: Issue,
    voter_id: Optional[UUID],
    vote_type: Union[str, VoteType],
    now: Optional[datetime] = None,
) -> VoteOutcome:
    """
    Record ``voter_id``'s vote on ``issue``.

    * no existing vote: a vote entry is appended and its counter incremented;
    * same direction as the existing vote: ``DuplicateVoteError``, nothing changes;
    * opposite direction: the entry is switched in place and both counters move.

    Raises:
        ValidationError: unknown vote type or missing voter
        DuplicateVoteError: the voter already holds this exact vote
        VoteInvariantError: counters disagree with the voter list afterwards
    """
    vote_type = coerce_vote_type(vote_type)
    if voter_id is None:
        raise ValidationError("A voter identity is required")
    now = now or utcnow()

    existing = find_vote(issue, voter_id)
    if existing is None:
        issue.votes.append(IssueVote(voter_id=voter_id, vote_type=vote_type, voted_at=now))
        _bump(issue, vote_type, +1)
        action, previous = "added", None
    else:
        previous = VoteType(existing.vote_type)
        if previous is vote_type:
            raise DuplicateVoteError()
        _bump(issue, previous, -1)
        _bump(issue, vote_type, +1)
        existing.vote_type = vote_type
        existing.voted_at = now
        action = "switched"

    check_vote_invariant(issue)
    return VoteOutcome(
        action=action,
        vote_type=vote_type,
        previous_vote_type=previous,
        upvotes=issue.upvotes,
        downvotes=issue.downvotes,
    )


__all__ = [
    "VoteOutcome",
    "apply_vote",
    "check_vote_invariant",
    "coerce_vote_type",
    "find_vote",
    "tally",
    "user_vote",
]
