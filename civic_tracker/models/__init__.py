"""
SQLAlchemy database models.
"""

from civic_tracker.models.users import User, UserRole
from civic_tracker.models.issues import (
    Issue,
    IssueCategory,
    IssueComment,
    IssueImage,
    IssuePriority,
    IssueStatus,
    IssueVote,
    StatusHistory,
    VoteType,
)

__all__ = [
    "User",
    "UserRole",
    "Issue",
    "IssueCategory",
    "IssueComment",
    "IssueImage",
    "IssuePriority",
    "IssueStatus",
    "IssueVote",
    "StatusHistory",
    "VoteType",
]
