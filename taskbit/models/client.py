from taskbit.core.clock import UtcDateTime
from typing import Optional
from pydantic import BaseModel, EmailStr, Field
from taskbit.models.update import PartialUpdate


class Client(BaseModel):
    id: str
    uid: str
    name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    created_at: Optional[UtcDateTime] = None
    updated_at: Optional[UtcDateTime] = None


class ClientCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: Optional[str] = None
    address: Optional[str] = None


class ClientUpdate(PartialUpdate):
    non_nullable = frozenset({"name", "email"})

    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class PortalSettings(BaseModel):
    """Flags controlling what a client sees through the portal."""

    allow_project_view: bool = True
    allow_task_approval: bool = True
    allow_invoice_view: bool = True
    allow_invoice_payment: bool = True
    updated_at: Optional[UtcDateTime] = None


class PortalSettingsUpdate(PartialUpdate):
    non_nullable = frozenset({"allow_project_view", "allow_task_approval", "allow_invoice_view", "allow_invoice_payment"})

    allow_project_view: Optional[bool] = None
    allow_task_approval: Optional[bool] = None
    allow_invoice_view: Optional[bool] = None
    allow_invoice_payment: Optional[bool] = None
