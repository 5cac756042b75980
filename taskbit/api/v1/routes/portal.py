from fastapi import APIRouter, Depends, Query
from taskbit.core.middleware import get_db
from taskbit.services.action_service import ActionService
from taskbit.services.client_service import ClientService
import logging

logger = logging.getLogger(__name__)

# Client-facing; the portal token replaces Firebase authentication here
router = APIRouter()


def get_client_service(db=Depends(get_db)) -> ClientService:
    """Dependency to get client service instance"""
    return ClientService(db=db)


def get_action_service(db=Depends(get_db)) -> ActionService:
    """Dependency to get action service instance"""
    return ActionService(db=db)


@router.get("")
async def get_portal(
    token: str = Query(...),
    client_service: ClientService = Depends(get_client_service),
):
    """Projects and invoices the owner lets this client see"""
    return await client_service.get_portal_view(token)


@router.post("/tasks/{task_id}/approve")
async def approve_task(
    task_id: str,
    token: str = Query(...),
    actions: ActionService = Depends(get_action_service),
):
    return await actions.approve_task(token, task_id)


@router.post("/invoices/{invoice_id}/pay")
async def pay_invoice(
    invoice_id: str,
    token: str = Query(...),
    actions: ActionService = Depends(get_action_service),
):
    """Payment link for a sent or overdue invoice, when the owner allows it"""
    return await actions.pay_invoice(token, invoice_id)
