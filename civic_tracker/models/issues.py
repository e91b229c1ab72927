"""
Issue aggregate: the report itself plus its votes, comments, status history
and image references.

Child rows are only ever written through the parent issue inside one
transaction, with the issue row locked (see ``IssueService``).
"""
import enum
import uuid
from datetime import datetime, timezone

from geoalchemy2 import Geography, WKTElement
from shapely.geometry import Point
from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Text, Boolean,
    ForeignKey, Enum as SQLEnum, JSON, UniqueConstraint, Index
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from civic_tracker.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IssueCategory(str, enum.Enum):
    """Fixed set of reportable issue categories."""
    ROADS_TRANSPORT = "roads-transport"
    WATER_SUPPLY = "water-supply"
    ELECTRICITY = "electricity"
    SANITATION = "sanitation"
    PUBLIC_SAFETY = "public-safety"
    HEALTH_SERVICES = "health-services"
    EDUCATION = "education"
    ENVIRONMENT = "environment"
    INFRASTRUCTURE = "infrastructure"
    OTHER = "other"


class IssuePriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return PRIORITY_RANK[self]


PRIORITY_RANK = {
    IssuePriority.URGENT: 4,
    IssuePriority.HIGH: 3,
    IssuePriority.MEDIUM: 2,
    IssuePriority.LOW: 1,
}


class IssueStatus(str, enum.Enum):
    """Issue workflow states."""
    REPORTED = "reported"
    IN_REVIEW = "in-review"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"
    CLOSED = "closed"
    REJECTED = "rejected"


class VoteType(str, enum.Enum):
    UP = "up"
    DOWN = "down"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def _pg_enum(enum_cls, name: str) -> SQLEnum:
    # Persist the wire values ("in-review") rather than member names.
    return SQLEnum(enum_cls, name=name, values_callable=_enum_values)


ISSUE_STATUS_TYPE = _pg_enum(IssueStatus, "issue_status")


def location_point(longitude: float, latitude: float) -> WKTElement:
    """Build the geography value used by the radius filter."""
    return WKTElement(Point(longitude, latitude).wkt, srid=4326)


class Issue(Base):
    """
    A citizen-submitted report of a community problem.
    """
    __tablename__ = "issues"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Content
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(_pg_enum(IssueCategory, "issue_category"), nullable=False, index=True)
    priority = Column(
        _pg_enum(IssuePriority, "issue_priority"),
        nullable=False,
        default=IssuePriority.MEDIUM,
        index=True,
    )
    status = Column(
        ISSUE_STATUS_TYPE,
        nullable=False,
        default=IssueStatus.REPORTED,
        index=True,
    )
    tags = Column(JSON, nullable=False, default=list)

    # Location: the float pair is returned to clients verbatim, the geography
    # column only backs ST_DWithin.
    longitude = Column(Float, nullable=False)
    latitude = Column(Float, nullable=False)
    location = Column(Geography(geometry_type="POINT", srid=4326), nullable=False)

    # Address
    street = Column(String(255))
    area = Column(String(255))
    city = Column(String(100), nullable=False, index=True)
    state = Column(String(100))
    pincode = Column(String(6))
    landmark = Column(String(255))

    # Ownership
    reported_by_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    reported_by = relationship("User", foreign_keys=[reported_by_id], lazy="selectin")
    assigned_to_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), index=True)
    assigned_to = relationship("User", foreign_keys=[assigned_to_id], lazy="selectin")

    # Aggregates, kept equal to the voter tallies
    upvotes = Column(Integer, nullable=False, default=0)
    downvotes = Column(Integer, nullable=False, default=0)
    view_count = Column(Integer, nullable=False, default=0)

    # Dates
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    estimated_resolution_date = Column(DateTime(timezone=True))
    actual_resolution_date = Column(DateTime(timezone=True))

    # Embedded collections
    votes = relationship(
        "IssueVote",
        back_populates="issue",
        cascade="all, delete-orphan",
        order_by="IssueVote.voted_at",
        lazy="selectin",
    )
    comments = relationship(
        "IssueComment",
        back_populates="issue",
        cascade="all, delete-orphan",
        order_by="IssueComment.created_at",
        lazy="selectin",
    )
    status_history = relationship(
        "StatusHistory",
        back_populates="issue",
        cascade="all, delete-orphan",
        order_by="StatusHistory.changed_at",
        lazy="selectin",
    )
    images = relationship(
        "IssueImage",
        back_populates="issue",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_issues_status_created", "status", "created_at"),
    )

    def __init__(self, **kwargs):
        # Column defaults only apply at flush; the engines work on transient
        # instances too, so mirror them here.
        kwargs.setdefault("priority", IssuePriority.MEDIUM)
        kwargs.setdefault("status", IssueStatus.REPORTED)
        kwargs.setdefault("tags", [])
        kwargs.setdefault("upvotes", 0)
        kwargs.setdefault("downvotes", 0)
        kwargs.setdefault("view_count", 0)
        kwargs.setdefault("created_at", utcnow())
        if "location" not in kwargs and "longitude" in kwargs and "latitude" in kwargs:
            kwargs["location"] = location_point(kwargs["longitude"], kwargs["latitude"])
        super().__init__(**kwargs)

    @property
    def coordinates(self) -> list[float]:
        """GeoJSON order: [longitude, latitude]."""
        return [self.longitude, self.latitude]

    @property
    def total_votes(self) -> int:
        return (self.upvotes or 0) + (self.downvotes or 0)

    def __repr__(self) -> str:
        return f"<Issue(id={self.id}, status={self.status}, title={self.title!r})>"


class IssueVote(Base):
    """One user's current vote on one issue."""
    __tablename__ = "issue_votes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    issue_id = Column(
        UUID(as_uuid=True), ForeignKey("issues.id", ondelete="CASCADE"), nullable=False
    )
    issue = relationship("Issue", back_populates="votes")
    voter_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    vote_type = Column(_pg_enum(VoteType, "vote_type"), nullable=False)
    voted_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("issue_id", "voter_id", name="uq_issue_vote_voter"),
    )


class IssueComment(Base):
    """Append-only discussion entry."""
    __tablename__ = "issue_comments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    issue_id = Column(
        UUID(as_uuid=True), ForeignKey("issues.id", ondelete="CASCADE"), nullable=False
    )
    issue = relationship("Issue", back_populates="comments")
    author_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    author = relationship("User", lazy="selectin")
    text = Column(String(500), nullable=False)
    is_official = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_issue_comments_issue_created", "issue_id", "created_at"),
    )


class StatusHistory(Base):
    """
    Immutable record of a status change. ``status`` is the status the issue
    had *before* the change.
    """
    __tablename__ = "issue_status_history"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    issue_id = Column(
        UUID(as_uuid=True), ForeignKey("issues.id", ondelete="CASCADE"), nullable=False
    )
    issue = relationship("Issue", back_populates="status_history")
    status = Column(ISSUE_STATUS_TYPE, nullable=False)
    changed_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    comment = Column(String(500))
    changed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_issue_status_history_issue", "issue_id", "changed_at"),
    )


class IssueImage(Base):
    """Reference to an uploaded image held by the blob store."""
    __tablename__ = "issue_images"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    issue_id = Column(
        UUID(as_uuid=True), ForeignKey("issues.id", ondelete="CASCADE"), nullable=False
    )
    issue = relationship("Issue", back_populates="images")
    filename = Column(String(255), nullable=False)
    storage_path = Column(String(1024), nullable=False)
    mime_type = Column(String(50), nullable=False)
    size = Column(Integer, nullable=False)
    uploaded_at = Column(DateTime(timezone=True), default=utcnow)
