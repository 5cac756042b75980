from taskbit.core.clock import UtcDateTime
from typing import Dict, FrozenSet, List, Optional
import enum
import uuid
from pydantic import BaseModel, EmailStr, Field, model_validator
from taskbit.models.update import PartialUpdate


class InvoiceStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"


# One-way lifecycle: draft -> sent -> paid, draft -> paid, sent -> overdue -> paid
ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    InvoiceStatus.DRAFT.value: frozenset({InvoiceStatus.SENT.value, InvoiceStatus.PAID.value}),
    InvoiceStatus.SENT.value: frozenset({InvoiceStatus.PAID.value, InvoiceStatus.OVERDUE.value}),
    InvoiceStatus.OVERDUE.value: frozenset({InvoiceStatus.PAID.value}),
    InvoiceStatus.PAID.value: frozenset(),
}

# Statuses an emailed invoice may be (re)sent from
EMAILABLE_STATUSES = frozenset({
    InvoiceStatus.DRAFT.value,
    InvoiceStatus.SENT.value,
    InvoiceStatus.OVERDUE.value,
})

# Statuses visible to a client through the portal
CLIENT_VISIBLE_STATUSES = [
    InvoiceStatus.SENT.value,
    InvoiceStatus.PAID.value,
    InvoiceStatus.OVERDUE.value,
]


def can_transition(current: str, new: str) -> bool:
    """Setting the current status again is allowed and changes nothing."""
    return current == new or new in ALLOWED_TRANSITIONS.get(current, frozenset())


class InvoiceItem(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    description: str = Field(..., min_length=1)
    quantity: float = Field(..., gt=0)
    unit_price: float = Field(..., ge=0)
    total: float = 0

    @model_validator(mode="after")
    def compute_total(self):
        # Never trust a client-supplied total
        self.total = round(self.quantity * self.unit_price, 2)
        return self


def items_total(items: List[InvoiceItem]) -> float:
    return round(sum(item.total for item in items), 2)


class Invoice(BaseModel):
    id: str
    uid: str
    project_id: Optional[str] = None
    client_id: Optional[str] = None
    client_name: str
    client_email: str
    invoice_number: str
    issue_date: UtcDateTime
    due_date: UtcDateTime
    items: List[InvoiceItem] = Field(default_factory=list)
    total_amount: float = 0
    status: InvoiceStatus = InvoiceStatus.DRAFT
    notes: Optional[str] = None
    created_at: Optional[UtcDateTime] = None
    updated_at: Optional[UtcDateTime] = None
    paid_at: Optional[UtcDateTime] = None
    stripe_payment_link_id: Optional[str] = None
    stripe_payment_link_url: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None

    class Config:
        use_enum_values = True


class InvoiceCreate(BaseModel):
    project_id: Optional[str] = None
    client_id: Optional[str] = None
    client_name: str = Field(..., min_length=1)
    client_email: EmailStr
    issue_date: UtcDateTime
    due_date: UtcDateTime
    items: List[InvoiceItem] = Field(..., min_length=1)
    status: InvoiceStatus = InvoiceStatus.DRAFT
    notes: Optional[str] = None

    class Config:
        use_enum_values = True


class InvoiceUpdate(PartialUpdate):
    non_nullable = frozenset({"client_name", "client_email", "issue_date", "due_date", "items", "status"})

    project_id: Optional[str] = None
    client_id: Optional[str] = None
    client_name: Optional[str] = Field(None, min_length=1)
    client_email: Optional[EmailStr] = None
    issue_date: Optional[UtcDateTime] = None
    due_date: Optional[UtcDateTime] = None
    items: Optional[List[InvoiceItem]] = Field(None, min_length=1)
    status: Optional[InvoiceStatus] = None
    notes: Optional[str] = None

    class Config:
        use_enum_values = True


class BillingInvoice(BaseModel):
    """Subscription invoice paid through Stripe, keyed by the Stripe invoice id."""

    stripe_invoice_id: str
    amount: float
    currency: str
    status: str
    subscription_id: Optional[str] = None
    hosted_invoice_url: Optional[str] = None
    created: Optional[UtcDateTime] = None
    updated_at: Optional[UtcDateTime] = None
