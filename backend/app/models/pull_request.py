"""Pull request metadata model."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class PullRequest(Base):
    """Pull request metadata mirrored from GitHub.

    Upserted by (repository_id, number); never duplicated.
    """

    __tablename__ = "pull_requests"
    __table_args__ = (
        UniqueConstraint("repository_id", "number", name="uq_pull_requests_repo_number"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    repository_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )

    # PR info
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    author_username: Mapped[str | None] = mapped_column(String(255))
    author_avatar_url: Mapped[str | None] = mapped_column(String(500))
    html_url: Mapped[str | None] = mapped_column(String(500))

    # Branches
    base_branch: Mapped[str] = mapped_column(String(255), default="main")
    head_branch: Mapped[str] = mapped_column(String(255), default="main")
    base_commit_sha: Mapped[str | None] = mapped_column(String(40))
    head_commit_sha: Mapped[str | None] = mapped_column(String(40))

    status: Mapped[str] = mapped_column(String(20), default="open")
    # Allowed: open, closed

    # GitHub timestamps
    opened_at: Mapped[datetime | None] = mapped_column(DateTime)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime)
    merged_at: Mapped[datetime | None] = mapped_column(DateTime)
