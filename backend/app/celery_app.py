"""Celery application configuration.

Used only when TASK_BACKEND=celery; scans then survive API restarts because
they sit in the broker instead of the API process.
"""

from celery import Celery

from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "scan_orchestrator",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["app.tasks.scan_repo", "app.tasks.scan_pr"],
)

celery_app.conf.update(
    # Task execution
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Full scans of large repositories are slow
    task_track_started=True,
    task_time_limit=3600,
    task_soft_time_limit=3300,

    # A worker crash re-delivers the task; the job transition guard makes
    # the second delivery a no-op once the job has started
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    worker_prefetch_multiplier=1,
    worker_concurrency=2,
)
