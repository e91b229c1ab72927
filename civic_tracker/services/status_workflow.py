"""Issue status workflow with an append-only audit trail."""
from __future__ import annotations

from datetime import datetime
from typing import Optional, Union
from uuid import UUID

from civic_tracker.core.errors import IllegalTransitionError, ValidationError
from civic_tracker.models.issues import Issue, IssueStatus, StatusHistory, utcnow

TERMINAL_STATUSES = frozenset({IssueStatus.CLOSED, IssueStatus.REJECTED})

TRANSITIONS: dict[IssueStatus, frozenset[IssueStatus]] = {
    IssueStatus.REPORTED: frozenset({IssueStatus.IN_REVIEW, IssueStatus.REJECTED}),
    IssueStatus.IN_REVIEW: frozenset({IssueStatus.IN_PROGRESS, IssueStatus.REJECTED}),
    IssueStatus.IN_PROGRESS: frozenset({IssueStatus.RESOLVED, IssueStatus.REJECTED}),
    IssueStatus.RESOLVED: frozenset({IssueStatus.CLOSED, IssueStatus.REJECTED}),
    IssueStatus.CLOSED: frozenset(),
    IssueStatus.REJECTED: frozenset(),
}


def coerce_status(value: Union[str, IssueStatus]) -> IssueStatus:
    try:
        return IssueStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in IssueStatus)
        raise ValidationError(f"Invalid status '{value}'. Must be one of: {allowed}")


def allowed_transitions(status: Union[str, IssueStatus]) -> list[IssueStatus]:
    """Statuses reachable from ``status`` in one step, in workflow order."""
    targets = TRANSITIONS[coerce_status(status)]
    return [s for s in IssueStatus if s in targets]


def can_transition(current: Union[str, IssueStatus], new: Union[str, IssueStatus]) -> bool:
    return coerce_status(new) in TRANSITIONS[coerce_status(current)]


def transition_status(
    issue: Issue,
    new_status: Union[str, IssueStatus],
    changed_by: UUID,
    comment: Optional[str] = None,
    now: Optional[datetime] = None,
    enforce: bool = True,
) -> Issue:
    """
    Move ``issue`` to ``new_status`` and append one history entry.

    The history entry records the status the issue had before this call.
    Entering ``resolved`` stamps ``actual_resolution_date`` the first time
    only; later transitions never overwrite it.

    With ``enforce=False`` any status may follow any other (only a no-op
    change is refused).

    Raises:
        ValidationError: unknown status, or the issue already has it
        IllegalTransitionError: the change is not in ``TRANSITIONS``
    """
    target = coerce_status(new_status)
    current = coerce_status(issue.status)

    if target is current:
        raise ValidationError(f"Issue is already '{current.value}'")
    if enforce and target not in TRANSITIONS[current]:
        raise IllegalTransitionError(current.value, target.value)

    now = now or utcnow()
    issue.status_history.append(
        StatusHistory(
            status=current,
            changed_by_id=changed_by,
            comment=comment or None,
            changed_at=now,
        )
    )
    issue.status = target
    issue.updated_at = now

    if target is IssueStatus.RESOLVED and issue.actual_resolution_date is None:
        issue.actual_resolution_date = now

    return issue


__all__ = [
    "TERMINAL_STATUSES",
    "TRANSITIONS",
    "allowed_transitions",
    "can_transition",
    "coerce_status",
    "transition_status",
]
