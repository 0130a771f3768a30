"""Full-repository scan models."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base, JSONType

JOB_STATUSES = ("pending", "running", "completed", "failed")
TERMINAL_STATUSES = ("completed", "failed")


class ScanJob(Base):
    """One full-repository scan attempt."""

    __tablename__ = "scan_jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    repository_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    # Request
    scan_type: Mapped[str] = mapped_column(String(20), default="full")
    # Allowed: full, file
    target_branch: Mapped[str | None] = mapped_column(String(255))
    target_commit_sha: Mapped[str | None] = mapped_column(String(40))
    files_to_scan: Mapped[list] = mapped_column(JSONType, default=list)

    # Status
    status: Mapped[str] = mapped_column(String(20), default="pending")
    # Allowed: pending, running, completed, failed
    progress: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text)

    # Stats
    total_files: Mapped[int] = mapped_column(Integer, default=0)
    total_vulnerabilities: Mapped[int] = mapped_column(Integer, default=0)

    # Timestamps
    heartbeat_at: Mapped[datetime | None] = mapped_column(DateTime)
    started_at: Mapped[datetime | None] = mapped_column(DateTime)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    results: Mapped[list["ScanResult"]] = relationship(
        "ScanResult",
        back_populates="scan_job",
        cascade="all, delete-orphan",
    )


class ScanResult(Base):
    """Per-file result of a full-repository scan."""

    __tablename__ = "scan_results"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    scan_job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("scan_jobs.id", ondelete="CASCADE"), nullable=False
    )
    file_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    # Recorded for incremental scans; not used to skip files yet
    file_content_hash: Mapped[str | None] = mapped_column(String(64))
    vulnerabilities: Mapped[list] = mapped_column(JSONType, default=list)
    fixes: Mapped[list] = mapped_column(JSONType, default=list)
    error: Mapped[str | None] = mapped_column(Text)
    ai_analysis_metadata: Mapped[dict] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    scan_job: Mapped["ScanJob"] = relationship("ScanJob", back_populates="results")
    vulnerability_details: Mapped[list["VulnerabilityDetail"]] = relationship(
        "VulnerabilityDetail",
        back_populates="scan_result",
        cascade="all, delete-orphan",
    )


class VulnerabilityDetail(Base):
    """One vulnerability row per finding, for filtering and querying."""

    __tablename__ = "vulnerability_details"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    scan_result_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("scan_results.id", ondelete="CASCADE"), nullable=False
    )

    # Classification
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    # Allowed: critical, high, medium, low, info
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    cwe_id: Mapped[str | None] = mapped_column(String(50))
    owasp_category: Mapped[str | None] = mapped_column(String(255))
    confidence_score: Mapped[float] = mapped_column(Float, default=0.8)

    # Location
    line_number: Mapped[int | None] = mapped_column(Integer)
    starting_line: Mapped[int | None] = mapped_column(Integer)
    ending_line: Mapped[int | None] = mapped_column(Integer)
    code_snippet: Mapped[str | None] = mapped_column(Text)

    fix_suggestion: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    scan_result: Mapped["ScanResult"] = relationship(
        "ScanResult", back_populates="vulnerability_details"
    )
