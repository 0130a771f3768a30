"""Repository watch model."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class RepositoryWatch(Base):
    """A user's subscription to pull request activity on a repository."""

    __tablename__ = "repository_watches"
    __table_args__ = (
        UniqueConstraint("user_id", "repository_id", name="uq_repository_watches_user_repo"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    repository_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )

    # Toggles
    email_notifications: Mapped[bool] = mapped_column(Boolean, default=True)
    scan_on_open: Mapped[bool] = mapped_column(Boolean, default=True)
    scan_on_sync: Mapped[bool] = mapped_column(Boolean, default=True)
    scan_on_merge: Mapped[bool] = mapped_column(Boolean, default=False)
    notification_email: Mapped[str | None] = mapped_column(String(255))

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )
