"""Queued notification model."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, JSONType


class Notification(Base):
    """Notification waiting for the mail delivery worker.

    Notification types:
    - pr_opened: a watched repository got a new pull request
    - scan_completed: PR scan finished without new vulnerabilities
    - vulnerability_found: PR scan finished and introduced vulnerabilities
    - scan_failed: PR scan failed
    """

    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    repository_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )
    pull_request_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("pull_requests.id", ondelete="SET NULL")
    )
    pr_scan_job_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("pr_scan_jobs.id", ondelete="SET NULL")
    )

    notification_type: Mapped[str] = mapped_column(String(50), nullable=False)
    recipient_email: Mapped[str] = mapped_column(String(255), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict)

    status: Mapped[str] = mapped_column(String(20), default="pending")
    # Allowed: pending, sent, failed (delivery is handled elsewhere)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    sent_at: Mapped[datetime | None] = mapped_column(DateTime)
