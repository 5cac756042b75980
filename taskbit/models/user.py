from taskbit.core.clock import UtcDateTime
from typing import Optional
from pydantic import BaseModel
from taskbit.models.subscription import FREE_PLAN


class UserProfile(BaseModel):
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    plan: str = FREE_PLAN
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    stripe_subscription_status: Optional[str] = None
    created_at: Optional[UtcDateTime] = None
    updated_at: Optional[UtcDateTime] = None
