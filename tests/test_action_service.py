"""
Tests for the action layer: error wrapping, cache revalidation and side effects
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

import pytest

from taskbit.core.cache import get_cached_view, set_cached_view
from taskbit.core.clock import utc_now
from taskbit.core.exceptions import (
    ActionError,
    ExternalServiceError,
    InvalidStateError,
    NotAuthenticatedError,
    NotFoundError,
    PermissionDeniedError,
)
from taskbit.models.client import ClientCreate, PortalSettingsUpdate
from taskbit.models.invoice import Invoice, InvoiceCreate, InvoiceItem, InvoiceStatus, InvoiceUpdate
from taskbit.models.project import ProjectCreate, TaskCreate
from taskbit.services.action_service import ActionService, render_invoice_email


@pytest.fixture
def email_service():
    service = MagicMock()
    service.send_email = AsyncMock()
    return service


@pytest.fixture
def billing_service():
    service = MagicMock()
    service.create_invoice_payment_link = AsyncMock(return_value={"id": "plink_1", "url": "https://pay.example/plink_1"})
    return service


@pytest.fixture
def actions(fake_db, activity_log, project_service, time_entry_service, invoice_service, client_service, email_service, billing_service):
    return ActionService(
        db=fake_db,
        activity_log=activity_log,
        project_service=project_service,
        time_entry_service=time_entry_service,
        invoice_service=invoice_service,
        client_service=client_service,
        email_service=email_service,
        billing_service=billing_service,
    )


def invoice_payload(status=InvoiceStatus.DRAFT, client_id=None):
    issued = utc_now()
    return InvoiceCreate(
        client_id=client_id,
        client_name="Acme Corp",
        client_email="billing@acme.io",
        issue_date=issued,
        due_date=issued + timedelta(days=14),
        items=[InvoiceItem(description="Work", quantity=1, unit_price=500)],
        status=status,
    )


class TestPerform:
    """Shared action wrapper"""

    @pytest.mark.asyncio
    async def test_success_drops_cached_views(self, actions, uid):
        set_cached_view(uid, "summary", {"weekly_hours": 1})
        set_cached_view(uid, "recent_projects", [])

        await actions.create_project(uid, ProjectCreate(name="Website"))

        assert get_cached_view(uid, "summary") is None
        assert get_cached_view(uid, "recent_projects") is None

    @pytest.mark.asyncio
    async def test_other_owner_cache_untouched(self, actions, uid):
        set_cached_view("someone_else", "summary", {"weekly_hours": 3})

        await actions.create_project(uid, ProjectCreate(name="Website"))

        assert get_cached_view("someone_else", "summary") == {"weekly_hours": 3}

    @pytest.mark.asyncio
    async def test_typed_errors_pass_through(self, actions, uid):
        set_cached_view(uid, "summary", {"weekly_hours": 1})

        with pytest.raises(NotFoundError):
            await actions.delete_project(uid, "missing")

        assert get_cached_view(uid, "summary") == {"weekly_hours": 1}

    @pytest.mark.asyncio
    async def test_unexpected_errors_become_action_errors(self, actions, project_service, uid):
        with patch.object(project_service, "create_project", AsyncMock(side_effect=RuntimeError("store exploded"))):
            with pytest.raises(ActionError) as exc_info:
                await actions.create_project(uid, ProjectCreate(name="Website"))

        assert exc_info.value.message == "Failed to create project. Please try again."
        assert "store exploded" not in exc_info.value.message


class TestInvoiceActions:

    def test_render_invoice_email(self):
        invoice = Invoice(
            id="inv_1",
            uid="user_1",
            client_name="Acme Corp",
            client_email="billing@acme.io",
            invoice_number="INV-2024-001",
            issue_date=utc_now(),
            due_date=utc_now(),
            total_amount=500,
        )

        html = render_invoice_email(invoice)

        assert "INV-2024-001" in html
        assert "500.00 USD" in html
        assert "https://app.example.com/invoices/inv_1" in html

    @pytest.mark.asyncio
    async def test_creating_sent_invoice_emails_client(self, actions, email_service, fake_db, uid):
        invoice = await actions.create_invoice(uid, invoice_payload(status=InvoiceStatus.SENT))

        email_service.send_email.assert_awaited_once()
        assert email_service.send_email.call_args.kwargs["to"] == "billing@acme.io"
        assert fake_db.activity(uid)[-1]["description"] == f"Sent Invoice: {invoice.invoice_number} to billing@acme.io"

    @pytest.mark.asyncio
    async def test_creating_draft_sends_nothing(self, actions, email_service, uid):
        await actions.create_invoice(uid, invoice_payload())

        email_service.send_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_email_failure_does_not_fail_status_change(self, actions, email_service, fake_db, uid):
        invoice = await actions.create_invoice(uid, invoice_payload())
        email_service.send_email.side_effect = ExternalServiceError("sendgrid", "Failed to send email")

        updated = await actions.update_invoice(uid, invoice.id, InvoiceUpdate(status=InvoiceStatus.SENT))

        assert updated.status == "sent"
        assert fake_db.data(f"users/{uid}/invoices/{invoice.id}")["status"] == "sent"

    @pytest.mark.asyncio
    async def test_send_invoice_email_promotes_draft(self, actions, email_service, uid):
        invoice = await actions.create_invoice(uid, invoice_payload())

        sent = await actions.send_invoice_email(uid, invoice.id)

        assert sent.status == "sent"
        email_service.send_email.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_send_invoice_email_keeps_overdue(self, actions, invoice_service, uid):
        invoice = await actions.create_invoice(uid, invoice_payload(status=InvoiceStatus.SENT))
        await invoice_service.update_invoice(uid, invoice.id, InvoiceUpdate(status=InvoiceStatus.OVERDUE))

        resent = await actions.send_invoice_email(uid, invoice.id)

        assert resent.status == "overdue"

    @pytest.mark.asyncio
    async def test_paid_invoice_cannot_be_emailed(self, actions, email_service, uid):
        invoice = await actions.create_invoice(uid, invoice_payload(status=InvoiceStatus.PAID))

        with pytest.raises(InvalidStateError):
            await actions.send_invoice_email(uid, invoice.id)

        email_service.send_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_failure_is_reported(self, actions, email_service, uid):
        invoice = await actions.create_invoice(uid, invoice_payload())
        email_service.send_email.side_effect = ExternalServiceError("sendgrid", "Failed to send email")

        with pytest.raises(ExternalServiceError):
            await actions.send_invoice_email(uid, invoice.id)


class TestPortalApproval:

    async def _portal(self, actions, client_service, project_service, uid):
        client = await actions.create_client(uid, ClientCreate(name="Acme", email="hello@acme.io"))
        project = await project_service.create_project(uid, ProjectCreate(name="Website", client_id=client.id))
        task = await project_service.create_task(uid, project.id, TaskCreate(name="Design"))
        url = await client_service.generate_portal_link(uid, client.id)
        return client, task, parse_qs(urlparse(url).query)["token"][0]

    @pytest.mark.asyncio
    async def test_client_approves_task(self, actions, client_service, project_service, fake_db, uid):
        _, task, token = await self._portal(actions, client_service, project_service, uid)

        approved = await actions.approve_task(token, task.id)

        assert approved.status == "done"
        assert fake_db.activity(uid)[-1]["description"] == "Client approved Task: Design"

    @pytest.mark.asyncio
    async def test_approval_disabled(self, actions, client_service, project_service, uid):
        client, task, token = await self._portal(actions, client_service, project_service, uid)
        await actions.update_portal_settings(uid, client.id, PortalSettingsUpdate(allow_task_approval=False))

        with pytest.raises(PermissionDeniedError):
            await actions.approve_task(token, task.id)

    @pytest.mark.asyncio
    async def test_cannot_approve_other_clients_task(self, actions, client_service, project_service, uid):
        _, _, token = await self._portal(actions, client_service, project_service, uid)
        other = await project_service.create_project(uid, ProjectCreate(name="Internal"))
        internal_task = await project_service.create_task(uid, other.id, TaskCreate(name="Secret"))

        with pytest.raises(NotFoundError):
            await actions.approve_task(token, internal_task.id)

    @pytest.mark.asyncio
    async def test_bad_token(self, actions):
        with pytest.raises(NotAuthenticatedError):
            await actions.approve_task("not-a-token", "task_1")


class TestPortalPayment:

    async def _portal(self, actions, client_service, invoice_service, uid, status=InvoiceStatus.SENT):
        client = await actions.create_client(uid, ClientCreate(name="Acme", email="hello@acme.io"))
        invoice = await invoice_service.create_invoice(uid, invoice_payload(status=status, client_id=client.id))
        url = await client_service.generate_portal_link(uid, client.id)
        return client, invoice, parse_qs(urlparse(url).query)["token"][0]

    @pytest.mark.asyncio
    async def test_client_gets_payment_link(self, actions, client_service, invoice_service, billing_service, uid):
        _, invoice, token = await self._portal(actions, client_service, invoice_service, uid)

        link = await actions.pay_invoice(token, invoice.id)

        assert link["url"] == "https://pay.example/plink_1"
        billing_service.create_invoice_payment_link.assert_awaited_once_with(uid, invoice.id)

    @pytest.mark.asyncio
    async def test_payment_disabled(self, actions, client_service, invoice_service, billing_service, uid):
        client, invoice, token = await self._portal(actions, client_service, invoice_service, uid)
        await actions.update_portal_settings(uid, client.id, PortalSettingsUpdate(allow_invoice_payment=False))

        with pytest.raises(PermissionDeniedError):
            await actions.pay_invoice(token, invoice.id)
        billing_service.create_invoice_payment_link.assert_not_called()

    @pytest.mark.asyncio
    async def test_draft_invoice_is_not_payable_from_portal(self, actions, client_service, invoice_service, billing_service, uid):
        _, invoice, token = await self._portal(actions, client_service, invoice_service, uid, status=InvoiceStatus.DRAFT)

        with pytest.raises(NotFoundError):
            await actions.pay_invoice(token, invoice.id)
        billing_service.create_invoice_payment_link.assert_not_called()
