"""
Pydantic schemas for issue requests and responses.

Request models validate the client payload before it reaches the service
layer. Response models are built from ORM instances with the ``from_issue``
constructors so that derived values (coordinates, vote totals, the viewer's
own vote) are computed in one place.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from civic_tracker.core.config import settings
from civic_tracker.models.issues import (
    Issue,
    IssueCategory,
    IssueComment,
    IssueImage,
    IssuePriority,
    IssueStatus,
    StatusHistory,
    VoteType,
)
from civic_tracker.services.ranking import RankedIssue
from civic_tracker.services.voting import user_vote

ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/gif")

_PINCODE_RE = re.compile(r"^\d{6}$")


def _normalise_tags(value: Union[str, List[str], None]) -> List[str]:
    """Accept ``"a, b"`` or ``["a", "b"]``; trim, drop blanks and duplicates."""
    if value is None:
        return []
    items = value.split(",") if isinstance(value, str) else value
    tags: List[str] = []
    for item in items:
        tag = str(item).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class GeoPoint(BaseModel):
    """GeoJSON point; ``coordinates`` is ``[longitude, latitude]``."""

    type: Literal["Point"] = "Point"
    coordinates: List[float]

    @field_validator("coordinates")
    @classmethod
    def validate_coordinates(cls, value: List[float]) -> List[float]:
        if len(value) != 2:
            raise ValueError("Coordinates must be [longitude, latitude]")
        longitude, latitude = value
        if not -180 <= longitude <= 180:
            raise ValueError("Longitude must be between -180 and 180")
        if not -90 <= latitude <= 90:
            raise ValueError("Latitude must be between -90 and 90")
        return value


class Address(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    street: Optional[str] = Field(None, max_length=255)
    area: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    pincode: Optional[str] = None
    landmark: Optional[str] = Field(None, max_length=255)

    @field_validator("pincode")
    @classmethod
    def validate_pincode(cls, value: Optional[str]) -> Optional[str]:
        if value in (None, ""):
            return None
        if not _PINCODE_RE.match(value):
            raise ValueError("Pincode must be 6 digits")
        return value


class AddressUpdate(Address):
    city: Optional[str] = Field(None, min_length=1, max_length=100)


class ImageReference(BaseModel):
    """An image already uploaded to the blob store."""

    filename: str = Field(..., min_length=1, max_length=255)
    storage_path: str = Field(..., min_length=1, max_length=1024)
    mime_type: str
    size: int = Field(..., gt=0)

    @field_validator("mime_type")
    @classmethod
    def validate_mime_type(cls, value: str) -> str:
        value = value.lower()
        if value not in ALLOWED_IMAGE_TYPES:
            raise ValueError(f"Unsupported image type. Allowed: {', '.join(ALLOWED_IMAGE_TYPES)}")
        return value

    @field_validator("size")
    @classmethod
    def validate_size(cls, value: int) -> int:
        if value > settings.MAX_IMAGE_BYTES:
            raise ValueError(f"Image must be at most {settings.MAX_IMAGE_BYTES} bytes")
        return value


class IssueCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=5, max_length=100)
    description: str = Field(..., min_length=20, max_length=1000)
    category: IssueCategory
    priority: IssuePriority = IssuePriority.MEDIUM
    location: GeoPoint
    address: Address
    images: List[ImageReference] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def split_tags(cls, value):
        return _normalise_tags(value)

    @field_validator("images")
    @classmethod
    def limit_images(cls, value: List[ImageReference]) -> List[ImageReference]:
        if len(value) > settings.MAX_IMAGES_PER_ISSUE:
            raise ValueError(f"At most {settings.MAX_IMAGES_PER_ISSUE} images per issue")
        return value


class IssueUpdate(BaseModel):
    """
    Partial update. Content fields are for the reporter; ``priority``,
    ``assigned_to_id`` and ``estimated_resolution_date`` are triage fields.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(None, min_length=5, max_length=100)
    description: Optional[str] = Field(None, min_length=20, max_length=1000)
    category: Optional[IssueCategory] = None
    location: Optional[GeoPoint] = None
    address: Optional[AddressUpdate] = None
    tags: Optional[List[str]] = None

    priority: Optional[IssuePriority] = None
    assigned_to_id: Optional[UUID] = None
    estimated_resolution_date: Optional[datetime] = None

    @field_validator("tags", mode="before")
    @classmethod
    def split_tags(cls, value):
        if value is None:
            return None
        return _normalise_tags(value)

    @field_validator("title", "description", "category", "tags", "priority")
    @classmethod
    def not_null(cls, value, info: ValidationInfo):
        # Omit a field to leave it unchanged; these columns cannot be cleared.
        if value is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return value


class VoteRequest(BaseModel):
    # Checked by the voting engine so the error message is stable.
    vote_type: str = Field(..., alias="voteType")

    model_config = ConfigDict(populate_by_name=True)


class CommentCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    text: str = Field(..., min_length=1, max_length=500)


class StatusChangeRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    status: str
    comment: Optional[str] = Field(None, max_length=500)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class UserSummary(BaseModel):
    id: UUID
    name: str

    model_config = ConfigDict(from_attributes=True)


class CommentResponse(BaseModel):
    id: Optional[UUID] = None
    author_id: UUID
    author: Optional[UserSummary] = None
    text: str
    is_official: bool
    created_at: Optional[datetime] = None

    @classmethod
    def from_comment(cls, comment: IssueComment) -> "CommentResponse":
        return cls(
            id=comment.id,
            author_id=comment.author_id,
            author=UserSummary.model_validate(comment.author) if comment.author else None,
            text=comment.text,
            is_official=bool(comment.is_official),
            created_at=comment.created_at,
        )


class StatusHistoryResponse(BaseModel):
    status: IssueStatus
    changed_by_id: UUID
    comment: Optional[str] = None
    changed_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_entry(cls, entry: StatusHistory) -> "StatusHistoryResponse":
        return cls.model_validate(entry)


class ImageResponse(BaseModel):
    filename: str
    storage_path: str
    mime_type: str
    size: int

    model_config = ConfigDict(from_attributes=True)


class AddressResponse(BaseModel):
    street: Optional[str] = None
    area: Optional[str] = None
    city: str
    state: Optional[str] = None
    pincode: Optional[str] = None
    landmark: Optional[str] = None


class IssueResponse(BaseModel):
    id: Optional[UUID] = None
    title: str
    description: str
    category: IssueCategory
    priority: IssuePriority
    status: IssueStatus
    tags: List[str]
    location: GeoPoint
    address: AddressResponse
    reported_by_id: UUID
    reported_by: Optional[UserSummary] = None
    assigned_to_id: Optional[UUID] = None
    upvotes: int
    downvotes: int
    total_votes: int
    user_vote: Optional[VoteType] = None
    view_count: int
    comments_count: int
    images: List[ImageResponse]
    created_at: datetime
    updated_at: Optional[datetime] = None
    estimated_resolution_date: Optional[datetime] = None
    actual_resolution_date: Optional[datetime] = None

    @classmethod
    def _fields_from(cls, issue: Issue, viewer_id: Optional[UUID]) -> dict:
        return dict(
            id=issue.id,
            title=issue.title,
            description=issue.description,
            category=issue.category,
            priority=issue.priority,
            status=issue.status,
            tags=list(issue.tags or []),
            location=GeoPoint(coordinates=issue.coordinates),
            address=AddressResponse(
                street=issue.street,
                area=issue.area,
                city=issue.city,
                state=issue.state,
                pincode=issue.pincode,
                landmark=issue.landmark,
            ),
            reported_by_id=issue.reported_by_id,
            reported_by=UserSummary.model_validate(issue.reported_by) if issue.reported_by else None,
            assigned_to_id=issue.assigned_to_id,
            upvotes=issue.upvotes or 0,
            downvotes=issue.downvotes or 0,
            total_votes=issue.total_votes,
            user_vote=user_vote(issue, viewer_id),
            view_count=issue.view_count or 0,
            comments_count=len(issue.comments),
            images=[ImageResponse.model_validate(image) for image in issue.images],
            created_at=issue.created_at,
            updated_at=issue.updated_at,
            estimated_resolution_date=issue.estimated_resolution_date,
            actual_resolution_date=issue.actual_resolution_date,
        )

    @classmethod
    def from_issue(cls, issue: Issue, viewer_id: Optional[UUID] = None) -> "IssueResponse":
        return cls(**cls._fields_from(issue, viewer_id))


class IssueDetailResponse(IssueResponse):
    comments: List[CommentResponse]
    status_history: List[StatusHistoryResponse]

    @classmethod
    def from_issue(cls, issue: Issue, viewer_id: Optional[UUID] = None) -> "IssueDetailResponse":
        return cls(
            **cls._fields_from(issue, viewer_id),
            comments=[CommentResponse.from_comment(c) for c in issue.comments],
            status_history=[StatusHistoryResponse.from_entry(h) for h in issue.status_history],
        )


class TrendingIssueResponse(IssueResponse):
    votes_total: int
    net_votes: int
    controversy_score: float

    @classmethod
    def from_ranked(cls, ranked: RankedIssue) -> "TrendingIssueResponse":
        fields = cls._fields_from(ranked.issue, None)
        fields["user_vote"] = ranked.user_vote
        return cls(
            **fields,
            votes_total=ranked.votes_total,
            net_votes=ranked.net_votes,
            controversy_score=round(ranked.controversy_score, 4),
        )


class VoteResponse(BaseModel):
    upvotes: int
    downvotes: int
    total_votes: int
    user_vote: VoteType


class TransitionsResponse(BaseModel):
    status: IssueStatus
    allowed: List[IssueStatus]
    enforced: bool


__all__ = [
    "ALLOWED_IMAGE_TYPES",
    "Address",
    "AddressUpdate",
    "CommentCreate",
    "CommentResponse",
    "GeoPoint",
    "ImageReference",
    "IssueCreate",
    "IssueDetailResponse",
    "IssueResponse",
    "IssueUpdate",
    "StatusChangeRequest",
    "StatusHistoryResponse",
    "TransitionsResponse",
    "TrendingIssueResponse",
    "VoteRequest",
    "VoteResponse",
]
