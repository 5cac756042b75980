from fastapi import APIRouter, Depends
from taskbit.core.middleware import get_current_user, get_db
from taskbit.models.client import ClientCreate, ClientUpdate, PortalSettingsUpdate
from taskbit.services.action_service import ActionService
from taskbit.services.client_service import ClientService
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


def get_client_service(db=Depends(get_db)) -> ClientService:
    """Dependency to get client service instance"""
    return ClientService(db=db)


def get_action_service(db=Depends(get_db)) -> ActionService:
    """Dependency to get action service instance"""
    return ActionService(db=db)


@router.get("")
async def list_clients(
    current_user: dict = Depends(get_current_user),
    client_service: ClientService = Depends(get_client_service),
):
    clients = await client_service.list_clients(current_user['uid'])
    return {"clients": clients}


@router.post("", status_code=201)
async def create_client(
    request: ClientCreate,
    current_user: dict = Depends(get_current_user),
    actions: ActionService = Depends(get_action_service),
):
    return await actions.create_client(current_user['uid'], request)


@router.get("/{client_id}")
async def get_client(
    client_id: str,
    current_user: dict = Depends(get_current_user),
    client_service: ClientService = Depends(get_client_service),
):
    return await client_service.get_client(current_user['uid'], client_id)


@router.patch("/{client_id}")
async def update_client(
    client_id: str,
    request: ClientUpdate,
    current_user: dict = Depends(get_current_user),
    actions: ActionService = Depends(get_action_service),
):
    return await actions.update_client(current_user['uid'], client_id, request)


@router.delete("/{client_id}")
async def delete_client(
    client_id: str,
    current_user: dict = Depends(get_current_user),
    actions: ActionService = Depends(get_action_service),
):
    await actions.delete_client(current_user['uid'], client_id)
    return {"status": "deleted", "client_id": client_id}


@router.get("/{client_id}/portal-settings")
async def get_portal_settings(
    client_id: str,
    current_user: dict = Depends(get_current_user),
    client_service: ClientService = Depends(get_client_service),
):
    return await client_service.get_portal_settings(current_user['uid'], client_id)


@router.patch("/{client_id}/portal-settings")
async def update_portal_settings(
    client_id: str,
    request: PortalSettingsUpdate,
    current_user: dict = Depends(get_current_user),
    actions: ActionService = Depends(get_action_service),
):
    return await actions.update_portal_settings(current_user['uid'], client_id, request)


@router.post("/{client_id}/portal-link")
async def create_portal_link(
    client_id: str,
    current_user: dict = Depends(get_current_user),
    client_service: ClientService = Depends(get_client_service),
):
    """Shareable client-portal URL carrying an expiring token"""
    url = await client_service.generate_portal_link(current_user['uid'], client_id)
    return {"url": url}
