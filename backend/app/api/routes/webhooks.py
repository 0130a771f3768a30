"""GitHub webhook handlers."""

import json
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from app.api.deps import Monitor
from app.container import get_github_service, get_job_store
from app.services.github_service import GitHubService
from app.services.job_store import JobStore

logger = logging.getLogger(__name__)

router = APIRouter()

HANDLED_PR_ACTIONS = ("opened", "synchronize", "closed")


@router.post("/github")
async def github_webhook(
    request: Request,
    monitor: Monitor,
    github_service: Annotated[GitHubService, Depends(get_github_service)],
    store: Annotated[JobStore, Depends(get_job_store)],
    x_hub_signature_256: str | None = Header(None),
    x_github_event: str | None = Header(None),
    x_github_delivery: str | None = Header(None),
):
    """Handle GitHub webhooks.

    Supported events:
    - ping: delivery check
    - pull_request: opened/synchronize/closed (scans per watch settings)
    """
    # Get raw payload for signature verification
    payload = await request.body()

    # Verify signature (constant-time comparison)
    if not github_service.verify_webhook_signature(payload, x_hub_signature_256 or ""):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )

    try:
        data = json.loads(payload)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload",
        )

    event = x_github_event or ""
    if event == "ping":
        return {"status": "pong"}
    if event != "pull_request":
        return {"status": "ignored", "event": event}

    action = data.get("action")
    if action not in HANDLED_PR_ACTIONS:
        return {"status": "ignored", "reason": f"action {action} not handled"}

    github_repo_id = (data.get("repository") or {}).get("id")
    pr_data = data.get("pull_request")
    if not github_repo_id or not pr_data:
        return {"status": "ignored", "reason": "no repository or pull request"}

    repository = await store.get_repository_by_github_id(github_repo_id)
    if repository is None:
        return {"status": "ignored", "reason": "repository not connected"}

    logger.info(
        "Webhook %s: pull_request.%s for %s#%s",
        x_github_delivery,
        action,
        repository.full_name,
        pr_data.get("number"),
    )
    handled = await monitor.handle_pull_request_event(action, repository, pr_data)
    return {"status": "ok", "action": action, **handled}
