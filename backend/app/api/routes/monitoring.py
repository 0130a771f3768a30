"""PR monitor control routes."""

from fastapi import APIRouter

from app.api.deps import CurrentUser, Monitor
from app.schemas.scan import MonitorIntervalRequest, MonitorStatusResponse

router = APIRouter()


@router.get("/status", response_model=MonitorStatusResponse)
async def monitor_status(user: CurrentUser, monitor: Monitor):
    return MonitorStatusResponse(**monitor.get_status())


@router.post("/start", response_model=MonitorStatusResponse)
async def start_monitor(user: CurrentUser, monitor: Monitor):
    """Start polling. Starting a running monitor is a no-op."""
    await monitor.start()
    return MonitorStatusResponse(**monitor.get_status())


@router.post("/stop", response_model=MonitorStatusResponse)
async def stop_monitor(user: CurrentUser, monitor: Monitor):
    """Stop polling. Stopping a stopped monitor is a no-op."""
    await monitor.stop()
    return MonitorStatusResponse(**monitor.get_status())


@router.put("/interval", response_model=MonitorStatusResponse)
async def set_monitor_interval(request: MonitorIntervalRequest, user: CurrentUser, monitor: Monitor):
    await monitor.set_interval(request.interval_seconds)
    return MonitorStatusResponse(**monitor.get_status())
