import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import List, Optional
from firebase_admin import firestore
from taskbit.core.clock import utc_now
from taskbit.core.exceptions import NotFoundError, ValidationError
from taskbit.core.firebase_service import get_firestore_client
from taskbit.models.activity_log import ActivityType, ActivityAction
from taskbit.models.time_entry import TimeEntry, TimeEntryCreate, TimeEntryUpdate
from taskbit.services.activity_log_service import ActivityLogService
from taskbit.services.project_service import ProjectService

logger = logging.getLogger(__name__)


def format_duration(seconds: int) -> str:
    hours, remainder = divmod(int(seconds), 3600)
    return f"{hours}h {remainder // 60}m"


def start_of_week(now: datetime) -> datetime:
    """Sunday 00:00 of the week containing now"""
    days_since_sunday = (now.weekday() + 1) % 7
    return (now - timedelta(days=days_since_sunday)).replace(hour=0, minute=0, second=0, microsecond=0)


class TimeEntryService:
    """Time entries live under their project; none may exist without one."""

    def __init__(
        self,
        db=None,
        project_service: Optional[ProjectService] = None,
        activity_log: Optional[ActivityLogService] = None,
    ):
        self.db = db or get_firestore_client()
        self.activity_log = activity_log or ActivityLogService(db=self.db)
        self.project_service = project_service or ProjectService(db=self.db, activity_log=self.activity_log)
        self.logger = logging.getLogger(__name__)

    def _entries(self, uid: str, project_id: str):
        return (
            self.db.collection('users').document(uid)
            .collection('projects').document(project_id)
            .collection('time_entries')
        )

    async def _require_entry(self, uid: str, project_id: str, entry_id: str):
        snapshot = await self._entries(uid, project_id).document(entry_id).get()
        if not snapshot.exists:
            raise NotFoundError("Time entry", entry_id)
        return snapshot

    async def create_time_entry(self, uid: str, payload: TimeEntryCreate) -> TimeEntry:
        self.logger.info(f"create_time_entry: Entry - user: {uid}, project: {payload.project_id}")

        project = await self.project_service.get_project(uid, payload.project_id)
        task_name = None
        if payload.task_id:
            task = await self.project_service.get_task(uid, payload.project_id, payload.task_id)
            task_name = task.name

        duration = payload.duration_seconds
        if duration is None:
            duration = int((payload.end_time - payload.start_time).total_seconds())

        try:
            now = utc_now()
            ref = self._entries(uid, payload.project_id).document()
            data = {
                **payload.model_dump(),
                'uid': uid,
                'project_name': project.name,
                'task_name': task_name,
                'duration_seconds': duration,
                'created_at': now,
                'updated_at': now,
            }
            await ref.set(data)
            await self.project_service.touch_project(uid, payload.project_id, now)
            await self.activity_log.add_entry(
                uid,
                ActivityType.TIME,
                ActivityAction.STOPPED,
                f"Logged time for {task_name or project.name} ({format_duration(duration)})",
            )
            self.logger.info(f"create_time_entry: Success - {ref.id}")
            return TimeEntry(id=ref.id, **data)
        except Exception as e:
            self.logger.error(f"create_time_entry: Failure - {e}")
            raise

    async def update_time_entry(
        self,
        uid: str,
        project_id: str,
        entry_id: str,
        payload: TimeEntryUpdate,
    ) -> TimeEntry:
        self.logger.info(f"update_time_entry: Entry - user: {uid}, entry: {entry_id}")

        snapshot = await self._require_entry(uid, project_id, entry_id)
        current = snapshot.to_dict()
        changes = payload.model_dump(exclude_unset=True)

        if changes.get('task_id'):
            task = await self.project_service.get_task(uid, project_id, changes['task_id'])
            changes['task_name'] = task.name
        elif 'task_id' in changes:
            changes['task_name'] = None

        start = changes.get('start_time', current.get('start_time'))
        end = changes.get('end_time', current.get('end_time'))
        if end < start:
            raise ValidationError("end_time must not be before start_time")
        if 'duration_seconds' not in changes and ('start_time' in changes or 'end_time' in changes):
            changes['duration_seconds'] = int((end - start).total_seconds())

        try:
            now = utc_now()
            changes['updated_at'] = now
            await snapshot.reference.update(changes)
            await self.project_service.touch_project(uid, project_id, now)
            merged = {**current, **changes}
            await self.activity_log.add_entry(
                uid,
                ActivityType.TIME,
                ActivityAction.UPDATED,
                f"Updated time entry for {merged.get('task_name') or merged.get('project_name')}",
            )
            self.logger.info(f"update_time_entry: Success - {entry_id}")
            return TimeEntry(id=entry_id, **merged)
        except Exception as e:
            self.logger.error(f"update_time_entry: Failure - {e}")
            raise

    async def delete_time_entry(self, uid: str, project_id: str, entry_id: str):
        self.logger.info(f"delete_time_entry: Entry - user: {uid}, entry: {entry_id}")

        snapshot = await self._require_entry(uid, project_id, entry_id)
        current = snapshot.to_dict()

        try:
            await snapshot.reference.delete()
            await self.project_service.touch_project(uid, project_id)
            await self.activity_log.add_entry(
                uid,
                ActivityType.TIME,
                ActivityAction.DELETED,
                f"Deleted time entry for {current.get('task_name') or current.get('project_name')}",
            )
            self.logger.info(f"delete_time_entry: Success - {entry_id}")
        except Exception as e:
            self.logger.error(f"delete_time_entry: Failure - {e}")
            raise

    async def list_time_entries(self, uid: str, project_id: Optional[str] = None) -> List[TimeEntry]:
        """Entries newest first, for one project or across all of the owner's projects"""
        if project_id:
            await self.project_service.get_project(uid, project_id)
            project_ids = [project_id]
        else:
            projects = self.db.collection('users').document(uid).collection('projects')
            project_ids = [doc.id async for doc in projects.stream()]

        entries = []
        for pid in project_ids:
            query = self._entries(uid, pid).order_by('start_time', direction=firestore.Query.DESCENDING)
            entries += [TimeEntry(id=doc.id, **doc.to_dict()) async for doc in query.stream()]

        entries.sort(key=lambda entry: entry.start_time, reverse=True)
        return entries

    async def get_time_report(
        self,
        uid: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        project_id: Optional[str] = None,
    ) -> dict:
        """Hours per project over a date range, rounded to a tenth of an hour"""
        entries = await self.list_time_entries(uid, project_id)
        seconds_by_project = defaultdict(int)
        names = {}

        for entry in entries:
            if start and entry.start_time < start:
                continue
            if end and entry.start_time > end:
                continue
            seconds_by_project[entry.project_id] += entry.duration_seconds
            names[entry.project_id] = entry.project_name

        projects = [
            {
                'project_id': pid,
                'project_name': names[pid],
                'hours': round(seconds / 3600, 1),
            }
            for pid, seconds in seconds_by_project.items()
        ]
        projects.sort(key=lambda row: row['hours'], reverse=True)
        return {
            'total_hours': round(sum(seconds_by_project.values()) / 3600, 1),
            'projects': projects,
        }

    async def get_weekly_hours(self, uid: str, now: Optional[datetime] = None) -> float:
        now = now or utc_now()
        report = await self.get_time_report(uid, start=start_of_week(now), end=now)
        return report['total_hours']
