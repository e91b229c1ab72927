"""Issue aggregate tables: issues, votes, comments, status history, images"""

revision = "20251017_010000"
down_revision = "20251017_000000"
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa
from geoalchemy2 import Geography
from sqlalchemy.dialects.postgresql import ENUM, UUID

issue_category = ENUM(
    "roads-transport",
    "water-supply",
    "electricity",
    "sanitation",
    "public-safety",
    "health-services",
    "education",
    "environment",
    "infrastructure",
    "other",
    name="issue_category",
    create_type=False,
)
issue_priority = ENUM("low", "medium", "high", "urgent", name="issue_priority", create_type=False)
issue_status = ENUM(
    "reported",
    "in-review",
    "in-progress",
    "resolved",
    "closed",
    "rejected",
    name="issue_status",
    create_type=False,
)
vote_type = ENUM("up", "down", name="vote_type", create_type=False)

ENUM_TYPES = (issue_category, issue_priority, issue_status, vote_type)


def _issue_fk():
    return sa.Column(
        "issue_id",
        UUID(as_uuid=True),
        sa.ForeignKey("issues.id", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade():
    """Create the issue aggregate tables and their indexes."""
    bind = op.get_bind()
    for enum_type in ENUM_TYPES:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "issues",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("category", issue_category, nullable=False),
        sa.Column("priority", issue_priority, nullable=False, server_default="medium"),
        sa.Column("status", issue_status, nullable=False, server_default="reported"),
        sa.Column("tags", sa.JSON, nullable=False, server_default="[]"),
        sa.Column("longitude", sa.Float, nullable=False),
        sa.Column("latitude", sa.Float, nullable=False),
        sa.Column(
            "location",
            Geography(geometry_type="POINT", srid=4326, spatial_index=False),
            nullable=False,
        ),
        sa.Column("street", sa.String(255)),
        sa.Column("area", sa.String(255)),
        sa.Column("city", sa.String(100), nullable=False),
        sa.Column("state", sa.String(100)),
        sa.Column("pincode", sa.String(6)),
        sa.Column("landmark", sa.String(255)),
        sa.Column("reported_by_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("assigned_to_id", UUID(as_uuid=True), sa.ForeignKey("users.id")),
        sa.Column("upvotes", sa.Integer, nullable=False, server_default="0"),
        sa.Column("downvotes", sa.Integer, nullable=False, server_default="0"),
        sa.Column("view_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        sa.Column("estimated_resolution_date", sa.DateTime(timezone=True)),
        sa.Column("actual_resolution_date", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_issues_category", "issues", ["category"])
    op.create_index("ix_issues_priority", "issues", ["priority"])
    op.create_index("ix_issues_status", "issues", ["status"])
    op.create_index("ix_issues_city", "issues", ["city"])
    op.create_index("ix_issues_reported_by_id", "issues", ["reported_by_id"])
    op.create_index("ix_issues_assigned_to_id", "issues", ["assigned_to_id"])
    op.create_index("ix_issues_created_at", "issues", ["created_at"])
    op.create_index("idx_issues_status_created", "issues", ["status", "created_at"])
    op.create_index("idx_issues_location", "issues", ["location"], postgresql_using="gist")

    op.create_table(
        "issue_votes",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        _issue_fk(),
        sa.Column("voter_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("vote_type", vote_type, nullable=False),
        sa.Column("voted_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("issue_id", "voter_id", name="uq_issue_vote_voter"),
    )
    op.create_index("ix_issue_votes_voter_id", "issue_votes", ["voter_id"])

    op.create_table(
        "issue_comments",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        _issue_fk(),
        sa.Column("author_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("text", sa.String(500), nullable=False),
        sa.Column("is_official", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "idx_issue_comments_issue_created", "issue_comments", ["issue_id", "created_at"]
    )

    op.create_table(
        "issue_status_history",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        _issue_fk(),
        sa.Column("status", issue_status, nullable=False),
        sa.Column("changed_by_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("comment", sa.String(500)),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "idx_issue_status_history_issue", "issue_status_history", ["issue_id", "changed_at"]
    )

    op.create_table(
        "issue_images",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        _issue_fk(),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("storage_path", sa.String(1024), nullable=False),
        sa.Column("mime_type", sa.String(50), nullable=False),
        sa.Column("size", sa.Integer, nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade():
    """Drop the issue aggregate tables and enum types."""
    op.drop_table("issue_images")
    op.drop_table("issue_status_history")
    op.drop_table("issue_comments")
    op.drop_table("issue_votes")
    op.drop_table("issues")

    bind = op.get_bind()
    for enum_type in reversed(ENUM_TYPES):
        enum_type.drop(bind, checkfirst=True)
