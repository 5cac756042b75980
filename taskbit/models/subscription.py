from taskbit.core.clock import UtcDateTime
from typing import Optional
from pydantic import BaseModel

FREE_PLAN = "free"

# Stripe subscription status strings this system writes itself
STATUS_PAST_DUE = "past_due"
STATUS_CANCELED = "canceled"


class Subscription(BaseModel):
    """Snapshot stored at users/{uid}/membership/subscription.

    Every webhook write overwrites it wholesale, so replays are harmless.
    """

    subscription_id: str
    customer_id: Optional[str] = None
    plan: str
    price_id: Optional[str] = None
    status: str
    current_period_start: Optional[UtcDateTime] = None
    current_period_end: Optional[UtcDateTime] = None
    cancel_at_period_end: bool = False
    payment_method: Optional[str] = None
    ended_at: Optional[UtcDateTime] = None
    updated_at: Optional[UtcDateTime] = None
