import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import stripe
from firebase_admin import firestore
from taskbit.core.clock import utc_now
from taskbit.core.config import settings
from taskbit.core.exceptions import ExternalServiceError, InvalidStateError, NotFoundError
from taskbit.core.firebase_service import get_firestore_client
from taskbit.models.invoice import InvoiceStatus
from taskbit.models.subscription import FREE_PLAN, Subscription
from taskbit.services.invoice_service import InvoiceService

logger = logging.getLogger(__name__)

stripe.api_key = settings.stripe_secret_key


def to_plain_dict(obj: Any) -> Dict[str, Any]:
    """Stripe objects as plain JSON-shaped dicts"""
    if isinstance(obj, dict):
        return obj
    return json.loads(str(obj))


def from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def to_cents(amount: float) -> int:
    return int(round(amount * 100))


def plan_from_price(price: Optional[Dict[str, Any]]) -> str:
    """Plan name from the purchased price's metadata, defaulting to the base paid plan"""
    metadata = (price or {}).get('metadata') or {}
    return metadata.get('plan') or metadata.get('plan_id') or metadata.get('planId') or settings.default_paid_plan


def subscription_snapshot(subscription: Dict[str, Any], plan: Optional[str] = None) -> Subscription:
    """Build the stored snapshot from a Stripe subscription payload"""
    items = (subscription.get('items') or {}).get('data') or [{}]
    first_item = items[0]
    price = first_item.get('price') or {}
    # Newer API versions carry the billing period on the item, not the subscription
    period_start = subscription.get('current_period_start') or first_item.get('current_period_start')
    period_end = subscription.get('current_period_end') or first_item.get('current_period_end')
    return Subscription(
        subscription_id=subscription['id'],
        customer_id=subscription.get('customer'),
        plan=plan or plan_from_price(price),
        price_id=price.get('id'),
        status=subscription.get('status', 'active'),
        current_period_start=from_timestamp(period_start),
        current_period_end=from_timestamp(period_end),
        cancel_at_period_end=bool(subscription.get('cancel_at_period_end')),
        payment_method=subscription.get('default_payment_method'),
        ended_at=from_timestamp(subscription.get('ended_at')),
        updated_at=utc_now(),
    )


class BillingService:
    """Calls issued to Stripe on behalf of an owner"""

    def __init__(self, db=None, invoice_service: Optional[InvoiceService] = None):
        self.db = db or get_firestore_client()
        self.invoice_service = invoice_service or InvoiceService(db=self.db)
        self.logger = logging.getLogger(__name__)

    def _user_ref(self, uid: str):
        return self.db.collection('users').document(uid)

    async def get_user(self, uid: str) -> Dict[str, Any]:
        snapshot = await self._user_ref(uid).get()
        return snapshot.to_dict() if snapshot.exists else {}

    async def find_uid_by_customer(self, customer_id: str) -> Optional[str]:
        query = (
            self.db.collection('users')
            .where(filter=firestore.FieldFilter('stripe_customer_id', '==', customer_id))
            .limit(1)
        )
        async for doc in query.stream():
            return doc.id
        return None

    async def ensure_customer(self, uid: str, email: Optional[str], name: Optional[str] = None) -> str:
        """Reuse the stored Stripe customer or create one for the owner"""
        self.logger.info(f"ensure_customer: Entry - user: {uid}")

        user = await self.get_user(uid)
        if user.get('stripe_customer_id'):
            return user['stripe_customer_id']

        try:
            customer = stripe.Customer.create(
                email=email,
                name=name,
                metadata={'firebase_uid': uid},
            )
        except stripe.StripeError as e:
            self.logger.error(f"ensure_customer: Failure - {e}")
            raise ExternalServiceError("stripe", "Could not create payment customer")

        await self._user_ref(uid).set({
            'uid': uid,
            'email': email,
            'stripe_customer_id': customer.id,
            'updated_at': utc_now(),
        }, merge=True)
        self.logger.info(f"ensure_customer: Success - {customer.id}")
        return customer.id

    async def create_checkout_session(self, uid: str, email: Optional[str], price_id: str) -> Dict[str, str]:
        self.logger.info(f"create_checkout_session: Entry - user: {uid}, price: {price_id}")

        customer_id = await self.ensure_customer(uid, email)
        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                mode="subscription",
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=f"{settings.frontend_url}/dashboard/billing?success=true",
                cancel_url=f"{settings.frontend_url}/dashboard/billing?canceled=true",
                allow_promotion_codes=True,
                metadata={'firebase_uid': uid},
                subscription_data={'metadata': {'firebase_uid': uid}},
            )
        except stripe.StripeError as e:
            self.logger.error(f"create_checkout_session: Failure - {e}")
            raise ExternalServiceError("stripe", "Could not start checkout")

        self.logger.info(f"create_checkout_session: Success - {session.id}")
        return {'session_id': session.id, 'url': session.url}

    async def create_portal_session(self, uid: str) -> Dict[str, str]:
        self.logger.info(f"create_portal_session: Entry - user: {uid}")

        user = await self.get_user(uid)
        customer_id = user.get('stripe_customer_id')
        if not customer_id:
            raise NotFoundError("Stripe customer")

        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=f"{settings.frontend_url}/dashboard/billing",
            )
        except stripe.StripeError as e:
            self.logger.error(f"create_portal_session: Failure - {e}")
            raise ExternalServiceError("stripe", "Could not open billing portal")

        self.logger.info(f"create_portal_session: Success - {user.get('stripe_customer_id')}")
        return {'url': session.url}

    async def _payable_invoice(self, uid: str, invoice_id: str):
        invoice = await self.invoice_service.get_invoice(uid, invoice_id)
        if invoice.status == InvoiceStatus.PAID.value:
            raise InvalidStateError(f"Invoice {invoice.invoice_number} is already paid")
        if invoice.total_amount <= 0:
            raise InvalidStateError(f"Invoice {invoice.invoice_number} has nothing to pay")
        return invoice

    async def create_invoice_payment_intent(self, uid: str, invoice_id: str) -> Dict[str, str]:
        """One-off payment of a local invoice; the webhook marks it paid"""
        self.logger.info(f"create_invoice_payment_intent: Entry - user: {uid}, invoice: {invoice_id}")

        invoice = await self._payable_invoice(uid, invoice_id)
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_cents(invoice.total_amount),
                currency=settings.currency,
                receipt_email=invoice.client_email,
                description=f"Invoice {invoice.invoice_number}",
                metadata={'invoice_id': invoice.id, 'firebase_uid': uid},
            )
        except stripe.StripeError as e:
            self.logger.error(f"create_invoice_payment_intent: Failure - {e}")
            raise ExternalServiceError("stripe", "Could not create payment")

        await self.invoice_service.set_payment_fields(uid, invoice_id, stripe_payment_intent_id=intent.id)
        self.logger.info(f"create_invoice_payment_intent: Success - {intent.id}")
        return {'payment_intent_id': intent.id, 'client_secret': intent.client_secret}

    async def create_invoice_payment_link(self, uid: str, invoice_id: str) -> Dict[str, str]:
        """Shareable payment link whose payment intents carry the invoice metadata"""
        self.logger.info(f"create_invoice_payment_link: Entry - user: {uid}, invoice: {invoice_id}")

        invoice = await self._payable_invoice(uid, invoice_id)
        metadata = {'invoice_id': invoice.id, 'firebase_uid': uid}
        try:
            price = stripe.Price.create(
                unit_amount=to_cents(invoice.total_amount),
                currency=settings.currency,
                product_data={'name': f"Invoice {invoice.invoice_number}"},
            )
            link = stripe.PaymentLink.create(
                line_items=[{'price': price.id, 'quantity': 1}],
                metadata=metadata,
                payment_intent_data={'metadata': metadata},
            )
        except stripe.StripeError as e:
            self.logger.error(f"create_invoice_payment_link: Failure - {e}")
            raise ExternalServiceError("stripe", "Could not create payment link")

        await self.invoice_service.set_payment_fields(
            uid,
            invoice_id,
            stripe_payment_link_id=link.id,
            stripe_payment_link_url=link.url,
        )
        self.logger.info(f"create_invoice_payment_link: Success - {link.id}")
        return {'id': link.id, 'url': link.url}

    async def get_subscription(self, uid: str) -> Dict[str, Any]:
        """Current plan summary; users who never subscribed are on the free plan"""
        snapshot = await self._user_ref(uid).collection('membership').document('subscription').get()
        if not snapshot.exists:
            user = await self.get_user(uid)
            return {'plan': user.get('plan', FREE_PLAN), 'status': 'active', 'subscription': None}
        subscription = Subscription(**snapshot.to_dict())
        return {'plan': subscription.plan, 'status': subscription.status, 'subscription': subscription}

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        try:
            return to_plain_dict(stripe.Subscription.retrieve(subscription_id))
        except stripe.StripeError as e:
            self.logger.error(f"retrieve_subscription: Failure - {e}")
            raise ExternalServiceError("stripe", "Could not load subscription")

    async def sync_products(self) -> int:
        """Mirror active Stripe products and their prices into products/"""
        self.logger.info("sync_products: Entry")

        count = 0
        try:
            for product in stripe.Product.list(active=True).auto_paging_iter():
                product = to_plain_dict(product)
                product_ref = self.db.collection('products').document(product['id'])
                await product_ref.set({
                    'name': product.get('name'),
                    'description': product.get('description'),
                    'active': product.get('active', True),
                    'metadata': product.get('metadata') or {},
                    'updated_at': utc_now(),
                })
                for price in stripe.Price.list(product=product['id'], active=True).auto_paging_iter():
                    price = to_plain_dict(price)
                    await product_ref.collection('prices').document(price['id']).set({
                        'active': price.get('active', True),
                        'currency': price.get('currency'),
                        'unit_amount': price.get('unit_amount'),
                        'interval': (price.get('recurring') or {}).get('interval'),
                        'metadata': price.get('metadata') or {},
                        'updated_at': utc_now(),
                    })
                count += 1
        except stripe.StripeError as e:
            self.logger.error(f"sync_products: Failure - {e}")
            raise ExternalServiceError("stripe", "Could not sync products")

        self.logger.info(f"sync_products: Success - {count} products")
        return count
