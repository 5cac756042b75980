from typing import Optional
from fastapi import APIRouter, Depends
from taskbit.core.middleware import get_current_user, get_db
from taskbit.models.invoice import InvoiceCreate, InvoiceStatus, InvoiceUpdate
from taskbit.services.action_service import ActionService
from taskbit.services.billing_service import BillingService
from taskbit.services.invoice_service import InvoiceService
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


def get_invoice_service(db=Depends(get_db)) -> InvoiceService:
    """Dependency to get invoice service instance"""
    return InvoiceService(db=db)


def get_action_service(db=Depends(get_db)) -> ActionService:
    """Dependency to get action service instance"""
    return ActionService(db=db)


def get_billing_service(db=Depends(get_db)) -> BillingService:
    """Dependency to get billing service instance"""
    return BillingService(db=db)


@router.get("")
async def list_invoices(
    status: Optional[InvoiceStatus] = None,
    current_user: dict = Depends(get_current_user),
    invoice_service: InvoiceService = Depends(get_invoice_service),
):
    invoices = await invoice_service.list_invoices(current_user['uid'], status.value if status else None)
    return {"invoices": invoices}


@router.post("", status_code=201)
async def create_invoice(
    request: InvoiceCreate,
    current_user: dict = Depends(get_current_user),
    actions: ActionService = Depends(get_action_service),
):
    """Create an invoice with the next number of the current year"""
    return await actions.create_invoice(current_user['uid'], request)


@router.get("/{invoice_id}")
async def get_invoice(
    invoice_id: str,
    current_user: dict = Depends(get_current_user),
    invoice_service: InvoiceService = Depends(get_invoice_service),
):
    return await invoice_service.get_invoice(current_user['uid'], invoice_id)


@router.patch("/{invoice_id}")
async def update_invoice(
    invoice_id: str,
    request: InvoiceUpdate,
    current_user: dict = Depends(get_current_user),
    actions: ActionService = Depends(get_action_service),
):
    return await actions.update_invoice(current_user['uid'], invoice_id, request)


@router.delete("/{invoice_id}")
async def delete_invoice(
    invoice_id: str,
    force: bool = False,
    current_user: dict = Depends(get_current_user),
    actions: ActionService = Depends(get_action_service),
):
    """Delete a draft; any other status needs force=true"""
    await actions.delete_invoice(current_user['uid'], invoice_id, force=force)
    return {"status": "deleted", "invoice_id": invoice_id}


@router.post("/{invoice_id}/send")
async def send_invoice(
    invoice_id: str,
    current_user: dict = Depends(get_current_user),
    actions: ActionService = Depends(get_action_service),
):
    return await actions.send_invoice_email(current_user['uid'], invoice_id)


@router.post("/{invoice_id}/payment-intent")
async def create_payment_intent(
    invoice_id: str,
    current_user: dict = Depends(get_current_user),
    billing_service: BillingService = Depends(get_billing_service),
):
    return await billing_service.create_invoice_payment_intent(current_user['uid'], invoice_id)


@router.post("/{invoice_id}/payment-link")
async def create_payment_link(
    invoice_id: str,
    current_user: dict = Depends(get_current_user),
    billing_service: BillingService = Depends(get_billing_service),
):
    return await billing_service.create_invoice_payment_link(current_user['uid'], invoice_id)
