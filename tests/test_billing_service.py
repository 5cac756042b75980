"""
Tests for Stripe-facing billing operations
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
import stripe

from taskbit.core.clock import utc_now
from taskbit.core.exceptions import ExternalServiceError, InvalidStateError, NotFoundError
from taskbit.models.invoice import InvoiceCreate, InvoiceItem, InvoiceStatus
from taskbit.services.billing_service import BillingService, plan_from_price, subscription_snapshot, to_cents


@pytest.fixture
def billing_service(fake_db, invoice_service):
    return BillingService(db=fake_db, invoice_service=invoice_service)


async def _invoice(invoice_service, uid, status=InvoiceStatus.SENT, unit_price=120.5):
    issued = utc_now()
    return await invoice_service.create_invoice(uid, InvoiceCreate(
        client_name="Acme Corp",
        client_email="billing@acme.io",
        issue_date=issued,
        due_date=issued + timedelta(days=14),
        items=[InvoiceItem(description="Work", quantity=2, unit_price=unit_price)],
        status=status,
    ))


class TestHelpers:
    def test_to_cents(self):
        assert to_cents(241.0) == 24100
        assert to_cents(19.99) == 1999

    def test_plan_from_price_metadata(self):
        assert plan_from_price({"metadata": {"plan": "pro"}}) == "pro"
        assert plan_from_price({"metadata": {"planId": "team"}}) == "team"
        assert plan_from_price({"metadata": {}}) == "basic"
        assert plan_from_price(None) == "basic"

    def test_snapshot_reads_item_period_when_missing_on_subscription(self):
        snapshot = subscription_snapshot({
            "id": "sub_1",
            "customer": "cus_1",
            "status": "trialing",
            "items": {"data": [{
                "price": {"id": "price_1", "metadata": {"plan": "pro"}},
                "current_period_start": 1700000000,
                "current_period_end": 1702592000,
            }]},
        })

        assert snapshot.plan == "pro"
        assert snapshot.price_id == "price_1"
        assert snapshot.current_period_start.year == 2023
        assert snapshot.current_period_end > snapshot.current_period_start


class TestCustomers:

    @pytest.mark.asyncio
    async def test_ensure_customer_creates_once(self, billing_service, fake_db, uid):
        with patch("stripe.Customer.create", return_value=MagicMock(id="cus_new")) as mock_create:
            first = await billing_service.ensure_customer(uid, "owner@acme.io")
            second = await billing_service.ensure_customer(uid, "owner@acme.io")

        assert first == second == "cus_new"
        mock_create.assert_called_once()
        assert mock_create.call_args.kwargs["metadata"] == {"firebase_uid": uid}
        assert fake_db.data(f"users/{uid}")["stripe_customer_id"] == "cus_new"
        assert await billing_service.find_uid_by_customer("cus_new") == uid

    @pytest.mark.asyncio
    async def test_stripe_error_becomes_external_service_error(self, billing_service, fake_db, uid):
        with patch("stripe.Customer.create", side_effect=stripe.APIConnectionError("network down")):
            with pytest.raises(ExternalServiceError):
                await billing_service.ensure_customer(uid, "owner@acme.io")

        assert fake_db.data(f"users/{uid}") is None

    @pytest.mark.asyncio
    async def test_find_unknown_customer(self, billing_service):
        assert await billing_service.find_uid_by_customer("cus_missing") is None


class TestSessions:

    @pytest.mark.asyncio
    async def test_checkout_session(self, billing_service, fake_db, uid):
        fake_db.docs[f"users/{uid}"] = {"stripe_customer_id": "cus_1"}
        session = MagicMock(id="cs_1", url="https://checkout.stripe.com/cs_1")

        with patch("stripe.checkout.Session.create", return_value=session) as mock_create:
            result = await billing_service.create_checkout_session(uid, "owner@acme.io", "price_pro")

        assert result == {"session_id": "cs_1", "url": "https://checkout.stripe.com/cs_1"}
        kwargs = mock_create.call_args.kwargs
        assert kwargs["customer"] == "cus_1"
        assert kwargs["mode"] == "subscription"
        assert kwargs["line_items"] == [{"price": "price_pro", "quantity": 1}]
        assert kwargs["success_url"].startswith("https://app.example.com/")

    @pytest.mark.asyncio
    async def test_portal_session_requires_customer(self, billing_service, uid):
        with pytest.raises(NotFoundError):
            await billing_service.create_portal_session(uid)

    @pytest.mark.asyncio
    async def test_portal_session(self, billing_service, fake_db, uid):
        fake_db.docs[f"users/{uid}"] = {"stripe_customer_id": "cus_1"}

        with patch("stripe.billing_portal.Session.create", return_value=MagicMock(url="https://billing.stripe.com/p")):
            result = await billing_service.create_portal_session(uid)

        assert result == {"url": "https://billing.stripe.com/p"}


class TestInvoicePayments:

    @pytest.mark.asyncio
    async def test_payment_intent_carries_invoice_metadata(self, billing_service, invoice_service, fake_db, uid):
        invoice = await _invoice(invoice_service, uid)
        intent = MagicMock(id="pi_1", client_secret="pi_1_secret")

        with patch("stripe.PaymentIntent.create", return_value=intent) as mock_create:
            result = await billing_service.create_invoice_payment_intent(uid, invoice.id)

        assert result == {"payment_intent_id": "pi_1", "client_secret": "pi_1_secret"}
        kwargs = mock_create.call_args.kwargs
        assert kwargs["amount"] == 24100
        assert kwargs["metadata"] == {"invoice_id": invoice.id, "firebase_uid": uid}
        assert fake_db.data(f"users/{uid}/invoices/{invoice.id}")["stripe_payment_intent_id"] == "pi_1"

    @pytest.mark.asyncio
    async def test_paid_invoice_cannot_be_paid_again(self, billing_service, invoice_service, uid):
        invoice = await _invoice(invoice_service, uid, status=InvoiceStatus.PAID)

        with patch("stripe.PaymentIntent.create") as mock_create:
            with pytest.raises(InvalidStateError):
                await billing_service.create_invoice_payment_intent(uid, invoice.id)

        mock_create.assert_not_called()

    @pytest.mark.asyncio
    async def test_zero_total_invoice_is_not_payable(self, billing_service, invoice_service, uid):
        invoice = await _invoice(invoice_service, uid, unit_price=0)

        with pytest.raises(InvalidStateError):
            await billing_service.create_invoice_payment_link(uid, invoice.id)

    @pytest.mark.asyncio
    async def test_payment_link_stored_on_invoice(self, billing_service, invoice_service, fake_db, uid):
        invoice = await _invoice(invoice_service, uid)

        with patch("stripe.Price.create", return_value=MagicMock(id="price_once")), \
             patch("stripe.PaymentLink.create", return_value=MagicMock(id="plink_1", url="https://buy.stripe.com/x")) as mock_link:
            result = await billing_service.create_invoice_payment_link(uid, invoice.id)

        assert result == {"id": "plink_1", "url": "https://buy.stripe.com/x"}
        assert mock_link.call_args.kwargs["payment_intent_data"] == {
            "metadata": {"invoice_id": invoice.id, "firebase_uid": uid},
        }
        stored = fake_db.data(f"users/{uid}/invoices/{invoice.id}")
        assert stored["stripe_payment_link_url"] == "https://buy.stripe.com/x"


class TestSubscription:

    @pytest.mark.asyncio
    async def test_free_user_without_subscription(self, billing_service, uid):
        result = await billing_service.get_subscription(uid)

        assert result == {"plan": "free", "status": "active", "subscription": None}

    @pytest.mark.asyncio
    async def test_stored_subscription(self, billing_service, fake_db, uid):
        fake_db.docs[f"users/{uid}/membership/subscription"] = {
            "subscription_id": "sub_1",
            "plan": "pro",
            "status": "past_due",
        }

        result = await billing_service.get_subscription(uid)

        assert result["plan"] == "pro"
        assert result["status"] == "past_due"
        assert result["subscription"].subscription_id == "sub_1"

    @pytest.mark.asyncio
    async def test_sync_products_mirrors_prices(self, billing_service, fake_db):
        products = MagicMock()
        products.auto_paging_iter.return_value = [{"id": "prod_1", "name": "Pro", "active": True, "metadata": {}}]
        prices = MagicMock()
        prices.auto_paging_iter.return_value = [{
            "id": "price_1",
            "active": True,
            "currency": "usd",
            "unit_amount": 1900,
            "recurring": {"interval": "month"},
            "metadata": {"plan": "pro"},
        }]

        with patch("stripe.Product.list", return_value=products), patch("stripe.Price.list", return_value=prices):
            count = await billing_service.sync_products()

        assert count == 1
        assert fake_db.data("products/prod_1")["name"] == "Pro"
        assert fake_db.data("products/prod_1/prices/price_1")["interval"] == "month"
