"""
Capability checks for mutating operations.

Every mutation goes through ``ensure_allowed(actor, action, resource)``
before touching the store, instead of ad hoc role tests in each handler.
"""

from __future__ import annotations

import enum
from typing import Any, Optional

from civic_tracker.core.errors import AuthorizationError
from civic_tracker.core.security import Actor
from civic_tracker.models.users import UserRole


class Action(str, enum.Enum):
    CREATE_ISSUE = "create_issue"
    UPDATE_ISSUE = "update_issue"
    TRIAGE_ISSUE = "triage_issue"
    TRANSITION_STATUS = "transition_status"
    DELETE_ISSUE = "delete_issue"
    VOTE = "vote"
    COMMENT = "comment"
    UPLOAD_IMAGE = "upload_image"
    MANAGE_USERS = "manage_users"


# Any active account may perform these.
_CITIZEN_ACTIONS = {
    Action.CREATE_ISSUE,
    Action.VOTE,
    Action.COMMENT,
    Action.UPLOAD_IMAGE,
}

# Reporter of the issue, or an admin.
_OWNER_ACTIONS = {
    Action.UPDATE_ISSUE,
    Action.DELETE_ISSUE,
}

# Moderators and admins.
_STAFF_ACTIONS = {
    Action.TRIAGE_ISSUE,
    Action.TRANSITION_STATUS,
}


def _owns(actor: Actor, resource: Any) -> bool:
    owner_id = getattr(resource, "reported_by_id", None)
    return owner_id is not None and owner_id == actor.user_id


def is_allowed(actor: Actor, action: Action, resource: Optional[Any] = None) -> bool:
    """Return True when ``actor`` may perform ``action`` on ``resource``."""
    if not actor.is_authenticated:
        return False
    if actor.role == UserRole.ADMIN:
        return True
    if action in _CITIZEN_ACTIONS:
        return True
    if action in _OWNER_ACTIONS:
        return _owns(actor, resource)
    if action in _STAFF_ACTIONS:
        return actor.role == UserRole.MODERATOR
    return False


def ensure_allowed(actor: Actor, action: Action, resource: Optional[Any] = None) -> None:
    """Raise ``AuthorizationError`` unless the capability check passes."""
    if not is_allowed(actor, action, resource):
        raise AuthorizationError(f"Not authorized to {action.value.replace('_', ' ')}")


__all__ = ["Action", "is_allowed", "ensure_allowed"]
