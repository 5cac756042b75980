from fastapi import APIRouter, Depends
from pydantic import BaseModel
from taskbit.core.middleware import get_current_user, get_db
from taskbit.services.billing_service import BillingService
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


def get_billing_service(db=Depends(get_db)) -> BillingService:
    """Dependency to get billing service instance"""
    return BillingService(db=db)


class CheckoutRequest(BaseModel):
    price_id: str


@router.get("/subscription")
async def get_subscription(
    current_user: dict = Depends(get_current_user),
    billing_service: BillingService = Depends(get_billing_service),
):
    """Current plan and subscription status"""
    return await billing_service.get_subscription(current_user['uid'])


@router.post("/checkout-session")
async def create_checkout_session(
    request: CheckoutRequest,
    current_user: dict = Depends(get_current_user),
    billing_service: BillingService = Depends(get_billing_service),
):
    """Start a Stripe Checkout subscription for the given price"""
    return await billing_service.create_checkout_session(
        current_user['uid'],
        current_user.get('email'),
        request.price_id,
    )


@router.post("/portal-session")
async def create_portal_session(
    current_user: dict = Depends(get_current_user),
    billing_service: BillingService = Depends(get_billing_service),
):
    """Open the Stripe billing portal; requires an existing customer"""
    return await billing_service.create_portal_session(current_user['uid'])
