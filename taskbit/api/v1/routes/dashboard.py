from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends
from taskbit.core.clock import ensure_utc
from taskbit.core.middleware import get_current_user, get_db
from taskbit.services.activity_log_service import ActivityLogService
from taskbit.services.dashboard_service import DashboardService
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


def get_dashboard_service(db=Depends(get_db)) -> DashboardService:
    """Dependency to get dashboard service instance"""
    return DashboardService(db=db)


def get_activity_log_service(db=Depends(get_db)) -> ActivityLogService:
    """Dependency to get activity log service instance"""
    return ActivityLogService(db=db)


@router.get("")
async def get_dashboard(
    current_user: dict = Depends(get_current_user),
    dashboard_service: DashboardService = Depends(get_dashboard_service),
):
    return await dashboard_service.get_summary(current_user['uid'])


@router.get("/activity")
async def get_activity(
    limit: int = 5,
    current_user: dict = Depends(get_current_user),
    activity_log: ActivityLogService = Depends(get_activity_log_service),
):
    """Most recent activity-log entries, newest first"""
    entries = await activity_log.get_recent_activity(current_user['uid'], limit=min(max(limit, 1), 100))
    return {"activity": entries}


@router.get("/time-report")
async def get_time_report(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    project_id: Optional[str] = None,
    current_user: dict = Depends(get_current_user),
    dashboard_service: DashboardService = Depends(get_dashboard_service),
):
    return await dashboard_service.get_time_report(
        current_user['uid'],
        start=ensure_utc(start) if start else None,
        end=ensure_utc(end) if end else None,
        project_id=project_id,
    )
