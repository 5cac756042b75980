from typing import Optional
from fastapi import APIRouter, Depends
from taskbit.core.middleware import get_current_user, get_db
from taskbit.models.time_entry import TimeEntryCreate, TimeEntryUpdate
from taskbit.services.action_service import ActionService
from taskbit.services.time_entry_service import TimeEntryService
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


def get_time_entry_service(db=Depends(get_db)) -> TimeEntryService:
    """Dependency to get time entry service instance"""
    return TimeEntryService(db=db)


def get_action_service(db=Depends(get_db)) -> ActionService:
    """Dependency to get action service instance"""
    return ActionService(db=db)


@router.get("")
async def list_time_entries(
    project_id: Optional[str] = None,
    current_user: dict = Depends(get_current_user),
    time_entry_service: TimeEntryService = Depends(get_time_entry_service),
):
    entries = await time_entry_service.list_time_entries(current_user['uid'], project_id)
    return {"time_entries": entries}


@router.post("", status_code=201)
async def create_time_entry(
    request: TimeEntryCreate,
    current_user: dict = Depends(get_current_user),
    actions: ActionService = Depends(get_action_service),
):
    return await actions.create_time_entry(current_user['uid'], request)


@router.patch("/{project_id}/{entry_id}")
async def update_time_entry(
    project_id: str,
    entry_id: str,
    request: TimeEntryUpdate,
    current_user: dict = Depends(get_current_user),
    actions: ActionService = Depends(get_action_service),
):
    return await actions.update_time_entry(current_user['uid'], project_id, entry_id, request)


@router.delete("/{project_id}/{entry_id}")
async def delete_time_entry(
    project_id: str,
    entry_id: str,
    current_user: dict = Depends(get_current_user),
    actions: ActionService = Depends(get_action_service),
):
    await actions.delete_time_entry(current_user['uid'], project_id, entry_id)
    return {"status": "deleted", "time_entry_id": entry_id}
