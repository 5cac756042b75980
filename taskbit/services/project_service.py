import asyncio
import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple
from firebase_admin import firestore
from taskbit.core.clock import utc_now
from taskbit.core.exceptions import NotFoundError
from taskbit.core.firebase_service import get_firestore_client
from taskbit.models.activity_log import ActivityType, ActivityAction
from taskbit.models.project import (
    Project,
    ProjectCreate,
    ProjectStatus,
    ProjectUpdate,
    Task,
    TaskCreate,
    TaskStatus,
    TaskUpdate,
)
from taskbit.services.activity_log_service import ActivityLogService

logger = logging.getLogger(__name__)


class ProjectService:
    """
    Projects with their task and time-entry subcollections.

    A project read always carries all of its current tasks, and every task or
    time-entry write touches the parent's updated_at/last_activity so that
    "recently active projects" stays correct without a trigger.
    """

    def __init__(self, db=None, activity_log: Optional[ActivityLogService] = None):
        self.db = db or get_firestore_client()
        self.activity_log = activity_log or ActivityLogService(db=self.db)
        self.logger = logging.getLogger(__name__)

    def _projects(self, uid: str):
        return self.db.collection('users').document(uid).collection('projects')

    def _project_ref(self, uid: str, project_id: str):
        return self._projects(uid).document(project_id)

    def _tasks(self, uid: str, project_id: str):
        return self._project_ref(uid, project_id).collection('tasks')

    async def _require_project(self, uid: str, project_id: str):
        snapshot = await self._project_ref(uid, project_id).get()
        if not snapshot.exists:
            raise NotFoundError("Project", project_id)
        return snapshot

    async def _require_task(self, uid: str, project_id: str, task_id: str):
        snapshot = await self._tasks(uid, project_id).document(task_id).get()
        if not snapshot.exists:
            raise NotFoundError("Task", task_id)
        return snapshot

    async def _load_tasks(self, uid: str, project_id: str) -> List[Task]:
        query = self._tasks(uid, project_id).order_by('created_at')
        return [Task(id=doc.id, **doc.to_dict()) async for doc in query.stream()]

    async def _to_project(self, uid: str, snapshot) -> Project:
        tasks = await self._load_tasks(uid, snapshot.id)
        return Project(id=snapshot.id, **snapshot.to_dict(), tasks=tasks)

    async def touch_project(self, uid: str, project_id: str, now: Optional[datetime] = None):
        """Roll a child mutation up into the parent's activity timestamps"""
        now = now or utc_now()
        await self._project_ref(uid, project_id).update({
            'updated_at': now,
            'last_activity': now,
        })

    # Projects

    async def list_projects(self, uid: str, status: Optional[str] = None) -> List[Project]:
        self.logger.info(f"list_projects: Entry - user: {uid}")

        try:
            query = self._projects(uid)
            if status:
                query = query.where(filter=firestore.FieldFilter('status', '==', status))
            query = query.order_by('created_at', direction=firestore.Query.DESCENDING)
            projects = [await self._to_project(uid, doc) async for doc in query.stream()]
            self.logger.info(f"list_projects: Success - {len(projects)} projects")
            return projects
        except Exception as e:
            self.logger.error(f"list_projects: Failure - {e}")
            raise

    async def get_project(self, uid: str, project_id: str) -> Project:
        self.logger.info(f"get_project: Entry - user: {uid}, project: {project_id}")
        snapshot = await self._require_project(uid, project_id)
        project = await self._to_project(uid, snapshot)
        self.logger.info(f"get_project: Success - {len(project.tasks)} tasks")
        return project

    async def list_recent_projects(self, uid: str, limit: int = 3) -> List[Project]:
        """Projects ordered by last activity, newest first"""
        query = (
            self._projects(uid)
            .order_by('last_activity', direction=firestore.Query.DESCENDING)
            .limit(limit)
        )
        return [await self._to_project(uid, doc) async for doc in query.stream()]

    async def create_project(self, uid: str, payload: ProjectCreate) -> Project:
        self.logger.info(f"create_project: Entry - user: {uid}, name: {payload.name}")

        try:
            now = utc_now()
            ref = self._projects(uid).document()
            data = {
                **payload.model_dump(),
                'uid': uid,
                'created_at': now,
                'updated_at': now,
                'last_activity': now,
            }
            await ref.set(data)
            await self.activity_log.add_entry(
                uid, ActivityType.PROJECT, ActivityAction.CREATED, f"Created Project: {payload.name}"
            )
            self.logger.info(f"create_project: Success - {ref.id}")
            return Project(id=ref.id, **data)
        except Exception as e:
            self.logger.error(f"create_project: Failure - {e}")
            raise

    async def update_project(self, uid: str, project_id: str, payload: ProjectUpdate) -> Project:
        self.logger.info(f"update_project: Entry - user: {uid}, project: {project_id}")

        snapshot = await self._require_project(uid, project_id)
        current = snapshot.to_dict()
        changes = payload.model_dump(exclude_unset=True)
        now = utc_now()
        changes.update({'updated_at': now, 'last_activity': now})

        try:
            await snapshot.reference.update(changes)
            name = changes.get('name') or current.get('name')
            new_status = changes.get('status')
            if new_status and new_status != current.get('status'):
                description = f"Updated Project Status: {name} to {new_status}"
                action = (
                    ActivityAction.COMPLETED
                    if new_status == ProjectStatus.COMPLETED.value
                    else ActivityAction.UPDATED
                )
            else:
                description = f"Updated Project: {name}"
                action = ActivityAction.UPDATED
            await self.activity_log.add_entry(uid, ActivityType.PROJECT, action, description)
            self.logger.info(f"update_project: Success - {project_id}")
            return await self.get_project(uid, project_id)
        except Exception as e:
            self.logger.error(f"update_project: Failure - {e}")
            raise

    async def delete_project(self, uid: str, project_id: str):
        """
        Delete a project with all of its tasks and time entries.

        Children are deleted concurrently and awaited together before the
        project itself. A partial failure leaves orphans behind; nothing is
        rolled back.
        """
        self.logger.info(f"delete_project: Entry - user: {uid}, project: {project_id}")

        snapshot = await self._require_project(uid, project_id)
        name = snapshot.to_dict().get('name')
        project_ref = snapshot.reference

        try:
            children = [doc.reference async for doc in project_ref.collection('tasks').stream()]
            children += [doc.reference async for doc in project_ref.collection('time_entries').stream()]
            await asyncio.gather(*(child.delete() for child in children))
            await project_ref.delete()
            await self.activity_log.add_entry(
                uid, ActivityType.PROJECT, ActivityAction.DELETED, f"Deleted Project: {name}"
            )
            self.logger.info(f"delete_project: Success - {project_id}, {len(children)} children removed")
        except Exception as e:
            self.logger.error(f"delete_project: Failure - {e}")
            raise

    # Tasks

    async def get_task(self, uid: str, project_id: str, task_id: str) -> Task:
        snapshot = await self._require_task(uid, project_id, task_id)
        return Task(id=snapshot.id, **snapshot.to_dict())

    async def create_task(self, uid: str, project_id: str, payload: TaskCreate) -> Task:
        self.logger.info(f"create_task: Entry - user: {uid}, project: {project_id}")

        await self._require_project(uid, project_id)

        try:
            now = utc_now()
            ref = self._tasks(uid, project_id).document()
            data = {
                **payload.model_dump(),
                'project_id': project_id,
                'created_at': now,
                'updated_at': now,
            }
            await ref.set(data)
            await self.touch_project(uid, project_id, now)
            await self.activity_log.add_entry(
                uid, ActivityType.TASK, ActivityAction.CREATED, f"Created Task: {payload.name}"
            )
            self.logger.info(f"create_task: Success - {ref.id}")
            return Task(id=ref.id, **data)
        except Exception as e:
            self.logger.error(f"create_task: Failure - {e}")
            raise

    async def update_task(self, uid: str, project_id: str, task_id: str, payload: TaskUpdate) -> Task:
        """
        Update a task. A status change logs one "updated" entry; a change to
        done also logs exactly one "completed" entry.
        """
        self.logger.info(f"update_task: Entry - user: {uid}, task: {task_id}")

        await self._require_project(uid, project_id)
        snapshot = await self._require_task(uid, project_id, task_id)
        current = snapshot.to_dict()
        changes = payload.model_dump(exclude_unset=True)
        now = utc_now()
        changes['updated_at'] = now

        try:
            await snapshot.reference.update(changes)
            await self.touch_project(uid, project_id, now)

            name = changes.get('name') or current.get('name')
            new_status = changes.get('status')
            if new_status and new_status != current.get('status'):
                await self.activity_log.add_entry(
                    uid,
                    ActivityType.TASK,
                    ActivityAction.UPDATED,
                    f"Updated Task Status: {name} to {new_status}",
                )
                if new_status == TaskStatus.DONE.value:
                    await self.activity_log.add_entry(
                        uid, ActivityType.TASK, ActivityAction.COMPLETED, f"Completed Task: {name}"
                    )
            else:
                await self.activity_log.add_entry(
                    uid, ActivityType.TASK, ActivityAction.UPDATED, f"Updated Task: {name}"
                )

            self.logger.info(f"update_task: Success - {task_id}")
            return Task(id=task_id, **{**current, **changes})
        except Exception as e:
            self.logger.error(f"update_task: Failure - {e}")
            raise

    async def delete_task(self, uid: str, project_id: str, task_id: str):
        self.logger.info(f"delete_task: Entry - user: {uid}, task: {task_id}")

        await self._require_project(uid, project_id)
        snapshot = await self._require_task(uid, project_id, task_id)

        try:
            await snapshot.reference.delete()
            await self.touch_project(uid, project_id)
            await self.activity_log.add_entry(
                uid, ActivityType.TASK, ActivityAction.DELETED, f"Deleted Task: {snapshot.to_dict().get('name')}"
            )
            self.logger.info(f"delete_task: Success - {task_id}")
        except Exception as e:
            self.logger.error(f"delete_task: Failure - {e}")
            raise

    async def find_task(
        self,
        uid: str,
        task_id: str,
        project_ids: Optional[Iterable[str]] = None,
    ) -> Tuple[str, Task]:
        """Locate a task by id across the owner's projects (or the given subset)"""
        if project_ids is None:
            project_ids = [doc.id async for doc in self._projects(uid).stream()]

        for project_id in project_ids:
            snapshot = await self._tasks(uid, project_id).document(task_id).get()
            if snapshot.exists:
                return project_id, Task(id=snapshot.id, **snapshot.to_dict())
        raise NotFoundError("Task", task_id)

    async def approve_task(
        self,
        uid: str,
        task_id: str,
        project_ids: Optional[Iterable[str]] = None,
    ) -> Task:
        """Client-portal approval: mark the task done and record who approved it"""
        self.logger.info(f"approve_task: Entry - user: {uid}, task: {task_id}")

        project_id, task = await self.find_task(uid, task_id, project_ids)
        updated = await self.update_task(uid, project_id, task_id, TaskUpdate(status=TaskStatus.DONE))
        await self.activity_log.add_entry(
            uid, ActivityType.TASK, ActivityAction.APPROVED, f"Client approved Task: {task.name}"
        )
        self.logger.info(f"approve_task: Success - {task_id}")
        return updated

    # Read helpers for the client portal and dashboard

    async def get_projects_for_client(self, uid: str, client_id: str) -> List[Project]:
        """Active projects linked to a client, each with its tasks"""
        query = (
            self._projects(uid)
            .where(filter=firestore.FieldFilter('client_id', '==', client_id))
            .where(filter=firestore.FieldFilter('status', '==', ProjectStatus.ACTIVE.value))
        )
        return [await self._to_project(uid, doc) async for doc in query.stream()]

    async def get_tasks_for_client(self, uid: str, client_id: str) -> List[Task]:
        projects = await self.get_projects_for_client(uid, client_id)
        return [task for project in projects for task in project.tasks]

    async def get_upcoming_tasks(
        self,
        uid: str,
        now: Optional[datetime] = None,
        days: int = 7,
        limit: int = 3,
    ) -> List[dict]:
        """Open tasks of active projects due within the next few days"""
        now = now or utc_now()
        horizon = now + timedelta(days=days)
        upcoming = []

        for project in await self.list_projects(uid, status=ProjectStatus.ACTIVE.value):
            for task in project.tasks:
                if task.status == TaskStatus.DONE.value or task.due_date is None:
                    continue
                if now <= task.due_date <= horizon:
                    upcoming.append({
                        'task': task,
                        'project_id': project.id,
                        'project_name': project.name,
                    })

        upcoming.sort(key=lambda item: item['task'].due_date)
        return upcoming[:limit]
