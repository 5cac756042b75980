import logging
from datetime import datetime
from typing import Optional
from taskbit.core.cache import get_cached_view, set_cached_view
from taskbit.core.clock import utc_now
from taskbit.core.firebase_service import get_firestore_client
from taskbit.services.activity_log_service import ActivityLogService
from taskbit.services.project_service import ProjectService
from taskbit.services.time_entry_service import TimeEntryService

logger = logging.getLogger(__name__)


class DashboardService:
    """Read-only summary views, cached per owner until the next mutation"""

    def __init__(
        self,
        db=None,
        activity_log: Optional[ActivityLogService] = None,
        project_service: Optional[ProjectService] = None,
        time_entry_service: Optional[TimeEntryService] = None,
    ):
        self.db = db or get_firestore_client()
        self.activity_log = activity_log or ActivityLogService(db=self.db)
        self.project_service = project_service or ProjectService(db=self.db, activity_log=self.activity_log)
        self.time_entry_service = time_entry_service or TimeEntryService(
            db=self.db,
            project_service=self.project_service,
            activity_log=self.activity_log,
        )
        self.logger = logging.getLogger(__name__)

    async def get_summary(self, uid: str, now: Optional[datetime] = None) -> dict:
        self.logger.info(f"get_summary: Entry - user: {uid}")

        cached = get_cached_view(uid, 'summary')
        if cached is not None:
            self.logger.info(f"get_summary: Cache hit - user: {uid}")
            return cached

        now = now or utc_now()
        activity = await self.activity_log.get_recent_activity(uid, limit=5)
        upcoming = await self.project_service.get_upcoming_tasks(uid, now=now)
        recent_projects = await self.project_service.list_recent_projects(uid, limit=3)
        weekly_hours = await self.time_entry_service.get_weekly_hours(uid, now=now)

        summary = {
            'weekly_hours': weekly_hours,
            'recent_activity': [entry.model_dump(mode='json') for entry in activity],
            'upcoming_tasks': [
                {
                    'task': item['task'].model_dump(mode='json'),
                    'project_id': item['project_id'],
                    'project_name': item['project_name'],
                }
                for item in upcoming
            ],
            'recent_projects': [project.model_dump(mode='json') for project in recent_projects],
        }
        set_cached_view(uid, 'summary', summary)
        self.logger.info(f"get_summary: Success - user: {uid}")
        return summary

    async def get_time_report(
        self,
        uid: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        project_id: Optional[str] = None,
    ) -> dict:
        return await self.time_entry_service.get_time_report(uid, start=start, end=end, project_id=project_id)
