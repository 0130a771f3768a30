"""Queues watcher notifications for pull request activity.

Rendering and SMTP delivery happen in a separate worker that drains the
`notifications` table; this service only decides who gets what.
"""

import logging
import uuid
from typing import Any

from app.config import Settings, get_settings
from app.models.notification import Notification
from app.models.pull_request import PullRequest
from app.models.repository import Repository
from app.models.repository_watch import RepositoryWatch
from app.services.job_store import JobStore

logger = logging.getLogger(__name__)

EVENTS = ("opened", "completed", "failed")


class NotificationService:
    """Notification dispatcher."""

    def __init__(self, store: JobStore, settings: Settings | None = None):
        self.store = store
        self.settings = settings or get_settings()

    async def notify(self, event: str, context: dict[str, Any]) -> Notification | None:
        """Queue a notification for a pull request event.

        Args:
            event: "opened", "completed" or "failed"
            context: user_id, repository, pull_request and optionally watch,
                pr_scan_job_id, summary (dict) and error_message

        Returns:
            The queued notification, or None when the user has no active
            watch with notifications enabled or no address to send to
        """
        if event not in EVENTS:
            raise ValueError(f"Unknown notification event: {event}")

        user_id: uuid.UUID = context["user_id"]
        repository: Repository = context["repository"]
        pull_request: PullRequest = context["pull_request"]

        watch: RepositoryWatch | None = context.get("watch")
        if watch is None:
            watch = await self.store.get_active_watch(user_id, repository.id)
        if watch is None or not watch.email_notifications:
            logger.debug("No notification for user %s on %s: not watching", user_id, repository.full_name)
            return None

        recipient = watch.notification_email
        if not recipient:
            user = await self.store.get_user(user_id)
            recipient = user.email if user else None
        if not recipient:
            logger.info("No email address for user %s; dropping %s notification", user_id, event)
            return None

        payload = {
            "pr_title": pull_request.title,
            "pr_number": pull_request.number,
            "pr_url": pull_request.html_url,
            "repo_name": repository.full_name,
        }
        pr_scan_job_id = context.get("pr_scan_job_id")

        if event == "opened":
            notification_type = "pr_opened"
            payload["pr_author"] = pull_request.author_username or "Unknown"
        elif event == "completed":
            summary = context.get("summary") or {}
            added = summary.get("total_added", 0)
            notification_type = "vulnerability_found" if added > 0 else "scan_completed"
            payload.update(
                {
                    "vulnerability_count": added,
                    "critical_count": summary.get("critical_added", 0),
                    "high_count": summary.get("high_added", 0),
                    "security_score": summary.get("score_after", 0),
                    "recommendation": summary.get("recommendation", "review"),
                    "results_url": f"{self.settings.frontend_url}/pr/scan/{pr_scan_job_id}",
                }
            )
        else:
            notification_type = "scan_failed"
            payload["error_message"] = context.get("error_message")

        notification = await self.store.add_notification(
            user_id=user_id,
            repository_id=repository.id,
            pull_request_id=pull_request.id,
            pr_scan_job_id=pr_scan_job_id,
            notification_type=notification_type,
            recipient_email=recipient,
            payload=payload,
        )
        logger.info("Queued %s notification for %s (%s)", notification_type, recipient, repository.full_name)
        return notification
