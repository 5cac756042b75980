"""
Action layer: the entry points the HTTP routes call.

Each action runs the domain operation for an explicit owner, drops the
owner's cached views on success, and turns unexpected failures into a
user-safe ActionError. Typed errors pass through unchanged.
"""

import logging
from typing import Awaitable, Callable, Dict, Optional, TypeVar
from taskbit.core.cache import revalidate_owner_views
from taskbit.core.config import settings
from taskbit.core.exceptions import ActionError, InvalidStateError, NotFoundError, PermissionDeniedError, TaskBitError
from taskbit.core.firebase_service import get_firestore_client
from taskbit.models.activity_log import ActivityType, ActivityAction
from taskbit.models.client import Client, ClientCreate, ClientUpdate, PortalSettings, PortalSettingsUpdate
from taskbit.models.invoice import EMAILABLE_STATUSES, Invoice, InvoiceCreate, InvoiceStatus, InvoiceUpdate
from taskbit.models.project import Project, ProjectCreate, ProjectUpdate, Task, TaskCreate, TaskUpdate
from taskbit.models.time_entry import TimeEntry, TimeEntryCreate, TimeEntryUpdate
from taskbit.services.activity_log_service import ActivityLogService
from taskbit.services.billing_service import BillingService
from taskbit.services.client_service import ClientService
from taskbit.services.email_service import EmailService
from taskbit.services.invoice_service import InvoiceService
from taskbit.services.project_service import ProjectService
from taskbit.services.time_entry_service import TimeEntryService

logger = logging.getLogger(__name__)

T = TypeVar("T")


def render_invoice_email(invoice: Invoice) -> str:
    link = invoice.stripe_payment_link_url or f"{settings.frontend_url}/invoices/{invoice.id}"
    return (
        f"<p>Hello {invoice.client_name},</p>"
        f"<p>Invoice {invoice.invoice_number} for {invoice.total_amount:.2f} {settings.currency.upper()} "
        f"is due on {invoice.due_date:%Y-%m-%d}.</p>"
        f"<p><a href=\"{link}\">View invoice</a></p>"
    )


class ActionService:
    def __init__(
        self,
        db=None,
        activity_log: Optional[ActivityLogService] = None,
        project_service: Optional[ProjectService] = None,
        time_entry_service: Optional[TimeEntryService] = None,
        invoice_service: Optional[InvoiceService] = None,
        client_service: Optional[ClientService] = None,
        email_service: Optional[EmailService] = None,
        billing_service: Optional[BillingService] = None,
    ):
        self.db = db or get_firestore_client()
        self.activity_log = activity_log or ActivityLogService(db=self.db)
        self.project_service = project_service or ProjectService(db=self.db, activity_log=self.activity_log)
        self.time_entry_service = time_entry_service or TimeEntryService(
            db=self.db,
            project_service=self.project_service,
            activity_log=self.activity_log,
        )
        self.invoice_service = invoice_service or InvoiceService(db=self.db, activity_log=self.activity_log)
        self.client_service = client_service or ClientService(
            db=self.db,
            activity_log=self.activity_log,
            project_service=self.project_service,
            invoice_service=self.invoice_service,
        )
        self.email_service = email_service or EmailService()
        self.billing_service = billing_service or BillingService(db=self.db, invoice_service=self.invoice_service)
        self.logger = logging.getLogger(__name__)

    async def _perform(self, action: str, uid: str, operation: Callable[[], Awaitable[T]]) -> T:
        self.logger.info(f"{action}: Entry - user: {uid}")

        try:
            result = await operation()
        except TaskBitError as e:
            self.logger.error(f"{action}: Failure - {e}")
            raise
        except Exception as e:
            self.logger.error(f"{action}: Failure - {e}")
            raise ActionError(f"Failed to {action.replace('_', ' ')}. Please try again.")

        revalidate_owner_views(uid)
        self.logger.info(f"{action}: Success - user: {uid}")
        return result

    # Projects and tasks

    async def create_project(self, uid: str, payload: ProjectCreate) -> Project:
        return await self._perform("create_project", uid, lambda: self.project_service.create_project(uid, payload))

    async def update_project(self, uid: str, project_id: str, payload: ProjectUpdate) -> Project:
        return await self._perform(
            "update_project", uid, lambda: self.project_service.update_project(uid, project_id, payload)
        )

    async def delete_project(self, uid: str, project_id: str):
        return await self._perform("delete_project", uid, lambda: self.project_service.delete_project(uid, project_id))

    async def create_task(self, uid: str, project_id: str, payload: TaskCreate) -> Task:
        return await self._perform(
            "create_task", uid, lambda: self.project_service.create_task(uid, project_id, payload)
        )

    async def update_task(self, uid: str, project_id: str, task_id: str, payload: TaskUpdate) -> Task:
        return await self._perform(
            "update_task", uid, lambda: self.project_service.update_task(uid, project_id, task_id, payload)
        )

    async def delete_task(self, uid: str, project_id: str, task_id: str):
        return await self._perform(
            "delete_task", uid, lambda: self.project_service.delete_task(uid, project_id, task_id)
        )

    # Time entries

    async def create_time_entry(self, uid: str, payload: TimeEntryCreate) -> TimeEntry:
        return await self._perform(
            "create_time_entry", uid, lambda: self.time_entry_service.create_time_entry(uid, payload)
        )

    async def update_time_entry(
        self,
        uid: str,
        project_id: str,
        entry_id: str,
        payload: TimeEntryUpdate,
    ) -> TimeEntry:
        return await self._perform(
            "update_time_entry",
            uid,
            lambda: self.time_entry_service.update_time_entry(uid, project_id, entry_id, payload),
        )

    async def delete_time_entry(self, uid: str, project_id: str, entry_id: str):
        return await self._perform(
            "delete_time_entry",
            uid,
            lambda: self.time_entry_service.delete_time_entry(uid, project_id, entry_id),
        )

    # Invoices

    async def _email_invoice_quietly(self, uid: str, invoice: Invoice) -> bool:
        """Side-effect email after a status change to sent; failures are only logged"""
        try:
            await self._deliver_invoice(uid, invoice)
            return True
        except Exception as e:
            self.logger.error(f"email_invoice: Failure - {invoice.invoice_number}: {e}")
            return False

    async def _deliver_invoice(self, uid: str, invoice: Invoice):
        await self.email_service.send_email(
            to=invoice.client_email,
            subject=f"Invoice {invoice.invoice_number}",
            html=render_invoice_email(invoice),
        )
        await self.activity_log.add_entry(
            uid,
            ActivityType.INVOICE,
            ActivityAction.SENT,
            f"Sent Invoice: {invoice.invoice_number} to {invoice.client_email}",
        )

    async def create_invoice(self, uid: str, payload: InvoiceCreate) -> Invoice:
        async def operation():
            invoice = await self.invoice_service.create_invoice(uid, payload)
            if invoice.status == InvoiceStatus.SENT.value:
                await self._email_invoice_quietly(uid, invoice)
            return invoice

        return await self._perform("create_invoice", uid, operation)

    async def update_invoice(self, uid: str, invoice_id: str, payload: InvoiceUpdate) -> Invoice:
        async def operation():
            before = await self.invoice_service.get_invoice(uid, invoice_id)
            invoice = await self.invoice_service.update_invoice(uid, invoice_id, payload)
            if invoice.status == InvoiceStatus.SENT.value and before.status != InvoiceStatus.SENT.value:
                await self._email_invoice_quietly(uid, invoice)
            return invoice

        return await self._perform("update_invoice", uid, operation)

    async def delete_invoice(self, uid: str, invoice_id: str, force: bool = False):
        return await self._perform(
            "delete_invoice", uid, lambda: self.invoice_service.delete_invoice(uid, invoice_id, force=force)
        )

    async def send_invoice_email(self, uid: str, invoice_id: str) -> Invoice:
        """Email the invoice to its client; a draft becomes sent"""
        async def operation():
            invoice = await self.invoice_service.get_invoice(uid, invoice_id)
            if invoice.status not in EMAILABLE_STATUSES:
                raise InvalidStateError(f"Invoice {invoice.invoice_number} is {invoice.status} and cannot be sent")
            await self._deliver_invoice(uid, invoice)
            return await self.invoice_service.mark_sent(uid, invoice_id)

        return await self._perform("send_invoice_email", uid, operation)

    # Clients

    async def create_client(self, uid: str, payload: ClientCreate) -> Client:
        return await self._perform("create_client", uid, lambda: self.client_service.create_client(uid, payload))

    async def update_client(self, uid: str, client_id: str, payload: ClientUpdate) -> Client:
        return await self._perform(
            "update_client", uid, lambda: self.client_service.update_client(uid, client_id, payload)
        )

    async def delete_client(self, uid: str, client_id: str):
        return await self._perform("delete_client", uid, lambda: self.client_service.delete_client(uid, client_id))

    async def update_portal_settings(
        self,
        uid: str,
        client_id: str,
        payload: PortalSettingsUpdate,
    ) -> PortalSettings:
        return await self._perform(
            "update_portal_settings",
            uid,
            lambda: self.client_service.update_portal_settings(uid, client_id, payload),
        )

    # Client portal

    async def approve_task(self, token: str, task_id: str) -> Task:
        """A client approves one of the tasks of its own projects"""
        uid, client = await self.client_service.resolve_portal_token(token)

        async def operation():
            portal_settings = await self.client_service.get_portal_settings(uid, client.id)
            if not portal_settings.allow_task_approval:
                raise PermissionDeniedError("Task approval is disabled for this client")
            projects = await self.project_service.get_projects_for_client(uid, client.id)
            return await self.project_service.approve_task(uid, task_id, project_ids=[p.id for p in projects])

        return await self._perform("approve_task", uid, operation)

    async def pay_invoice(self, token: str, invoice_id: str) -> Dict[str, str]:
        """A client opens a payment link for one of the invoices shown in its portal"""
        uid, client = await self.client_service.resolve_portal_token(token)

        async def operation():
            portal_settings = await self.client_service.get_portal_settings(uid, client.id)
            if not portal_settings.allow_invoice_payment:
                raise PermissionDeniedError("Invoice payment is disabled for this client")
            visible = await self.invoice_service.get_invoices_for_client(uid, client.id)
            if invoice_id not in {invoice.id for invoice in visible}:
                raise NotFoundError("Invoice", invoice_id)
            return await self.billing_service.create_invoice_payment_link(uid, invoice_id)

        return await self._perform("pay_invoice", uid, operation)
