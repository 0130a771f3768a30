"""Pull request diff scan models."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base, JSONType


class PRScanJob(Base):
    """One diff scan of a pull request at a specific head commit.

    The changed file list is frozen at creation; a force-push produces a new
    job instead of mutating this one.
    """

    __tablename__ = "pr_scan_jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    repository_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )
    pull_request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("pull_requests.id", ondelete="CASCADE"), nullable=False
    )
    pr_number: Mapped[int] = mapped_column(Integer, nullable=False)

    scan_type: Mapped[str] = mapped_column(String(20), default="pr_diff")
    base_commit_sha: Mapped[str | None] = mapped_column(String(40))
    head_commit_sha: Mapped[str | None] = mapped_column(String(40))
    files_changed: Mapped[list] = mapped_column(JSONType, default=list)

    # Status
    status: Mapped[str] = mapped_column(String(20), default="pending")
    # Allowed: pending, running, completed, failed
    progress: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text)

    # Timestamps
    heartbeat_at: Mapped[datetime | None] = mapped_column(DateTime)
    started_at: Mapped[datetime | None] = mapped_column(DateTime)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    results: Mapped[list["PRScanResult"]] = relationship(
        "PRScanResult",
        back_populates="pr_scan_job",
        cascade="all, delete-orphan",
    )
    security_summary: Mapped["SecuritySummary"] = relationship(
        "SecuritySummary",
        back_populates="pr_scan_job",
        uselist=False,
        cascade="all, delete-orphan",
    )


class PRScanResult(Base):
    """Per-file diff analysis. The three vulnerability lists are disjoint."""

    __tablename__ = "pr_scan_results"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    pr_scan_job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("pr_scan_jobs.id", ondelete="CASCADE"), nullable=False
    )
    file_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    change_type: Mapped[str] = mapped_column(String(20), nullable=False)
    # Allowed: added, modified, renamed
    head_content_hash: Mapped[str | None] = mapped_column(String(64))

    vulnerabilities_added: Mapped[list] = mapped_column(JSONType, default=list)
    vulnerabilities_fixed: Mapped[list] = mapped_column(JSONType, default=list)
    vulnerabilities_unchanged: Mapped[list] = mapped_column(JSONType, default=list)
    fixes: Mapped[list] = mapped_column(JSONType, default=list)
    security_impact: Mapped[dict] = mapped_column(JSONType, default=dict)
    ai_analysis_metadata: Mapped[dict] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    pr_scan_job: Mapped["PRScanJob"] = relationship("PRScanJob", back_populates="results")


class SecuritySummary(Base):
    """Aggregate security verdict for one PR scan job. Written once."""

    __tablename__ = "pr_security_summaries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    pr_scan_job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("pr_scan_jobs.id", ondelete="CASCADE"), nullable=False, unique=True
    )

    total_added: Mapped[int] = mapped_column(Integer, default=0)
    total_fixed: Mapped[int] = mapped_column(Integer, default=0)
    total_unchanged: Mapped[int] = mapped_column(Integer, default=0)
    critical_added: Mapped[int] = mapped_column(Integer, default=0)
    critical_fixed: Mapped[int] = mapped_column(Integer, default=0)
    high_added: Mapped[int] = mapped_column(Integer, default=0)
    high_fixed: Mapped[int] = mapped_column(Integer, default=0)

    score_before: Mapped[int] = mapped_column(Integer, nullable=False)
    score_after: Mapped[int] = mapped_column(Integer, nullable=False)
    recommendation: Mapped[str] = mapped_column(String(20), nullable=False)
    # Allowed: approve, review, block

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    pr_scan_job: Mapped["PRScanJob"] = relationship("PRScanJob", back_populates="security_summary")
