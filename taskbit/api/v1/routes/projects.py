from fastapi import APIRouter, Depends
from taskbit.core.middleware import get_current_user, get_db
from taskbit.models.project import ProjectCreate, ProjectUpdate, TaskCreate, TaskUpdate
from taskbit.services.action_service import ActionService
from taskbit.services.project_service import ProjectService
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


def get_project_service(db=Depends(get_db)) -> ProjectService:
    """Dependency to get project service instance"""
    return ProjectService(db=db)


def get_action_service(db=Depends(get_db)) -> ActionService:
    """Dependency to get action service instance"""
    return ActionService(db=db)


@router.get("")
async def list_projects(
    current_user: dict = Depends(get_current_user),
    project_service: ProjectService = Depends(get_project_service),
):
    """List the user's projects, newest first, each with its tasks"""
    projects = await project_service.list_projects(current_user['uid'])
    return {"projects": projects}


@router.post("", status_code=201)
async def create_project(
    request: ProjectCreate,
    current_user: dict = Depends(get_current_user),
    actions: ActionService = Depends(get_action_service),
):
    return await actions.create_project(current_user['uid'], request)


@router.get("/{project_id}")
async def get_project(
    project_id: str,
    current_user: dict = Depends(get_current_user),
    project_service: ProjectService = Depends(get_project_service),
):
    """Get one project with all of its current tasks"""
    return await project_service.get_project(current_user['uid'], project_id)


@router.patch("/{project_id}")
async def update_project(
    project_id: str,
    request: ProjectUpdate,
    current_user: dict = Depends(get_current_user),
    actions: ActionService = Depends(get_action_service),
):
    return await actions.update_project(current_user['uid'], project_id, request)


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    current_user: dict = Depends(get_current_user),
    actions: ActionService = Depends(get_action_service),
):
    """Delete a project together with its tasks and time entries"""
    await actions.delete_project(current_user['uid'], project_id)
    return {"status": "deleted", "project_id": project_id}


@router.post("/{project_id}/tasks", status_code=201)
async def create_task(
    project_id: str,
    request: TaskCreate,
    current_user: dict = Depends(get_current_user),
    actions: ActionService = Depends(get_action_service),
):
    return await actions.create_task(current_user['uid'], project_id, request)


@router.patch("/{project_id}/tasks/{task_id}")
async def update_task(
    project_id: str,
    task_id: str,
    request: TaskUpdate,
    current_user: dict = Depends(get_current_user),
    actions: ActionService = Depends(get_action_service),
):
    return await actions.update_task(current_user['uid'], project_id, task_id, request)


@router.delete("/{project_id}/tasks/{task_id}")
async def delete_task(
    project_id: str,
    task_id: str,
    current_user: dict = Depends(get_current_user),
    actions: ActionService = Depends(get_action_service),
):
    await actions.delete_task(current_user['uid'], project_id, task_id)
    return {"status": "deleted", "task_id": task_id}
