import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import stripe
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from taskbit.core.clock import utc_now
from taskbit.core.config import settings
from taskbit.core.firebase_service import FirebaseService, get_firebase_service, get_firestore_client
from taskbit.models.activity_log import ActivityType, ActivityAction
from taskbit.models.invoice import BillingInvoice
from taskbit.models.subscription import FREE_PLAN, STATUS_CANCELED, STATUS_PAST_DUE
from taskbit.services.activity_log_service import ActivityLogService
from taskbit.services.analytics_service import AnalyticsService
from taskbit.services.billing_service import BillingService, from_timestamp, subscription_snapshot
from taskbit.services.invoice_service import InvoiceService

logger = logging.getLogger(__name__)

router = APIRouter()

EventHandler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]

# Statuses under which the plan claim stays granted
ENTITLED_STATUSES = ("active", "trialing")


def verify_event(
    payload: bytes,
    sig_header: str,
    secret: Optional[str] = None,
    tolerance: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Verify the Stripe-Signature header, then parse the payload.

    Raises stripe.SignatureVerificationError for a bad signature and
    ValueError for a payload that is not a JSON event.
    """
    text = payload.decode('utf-8')
    stripe.WebhookSignature.verify_header(
        text,
        sig_header,
        secret or settings.stripe_webhook_secret,
        tolerance if tolerance is not None else settings.stripe_webhook_tolerance,
    )
    event = json.loads(text)
    if not isinstance(event, dict) or 'type' not in event:
        raise ValueError("Payload is not a Stripe event")
    return event


def is_subscription_invoice(invoice: Dict[str, Any]) -> bool:
    return (invoice.get('billing_reason') or '').startswith('subscription')


def invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    # Newer API versions move the id under parent.subscription_details
    if invoice.get('subscription'):
        return invoice['subscription']
    details = (invoice.get('parent') or {}).get('subscription_details') or {}
    return details.get('subscription')


class StripeEventReconciler:
    """
    Brings local subscription and invoice state in line with Stripe events.

    Events may arrive late, twice or out of order, so every effect is a full
    overwrite keyed by a Stripe or local id. Each handler runs inside its own
    failure containment; dispatch never raises.
    """

    def __init__(
        self,
        db=None,
        billing_service: Optional[BillingService] = None,
        invoice_service: Optional[InvoiceService] = None,
        activity_log: Optional[ActivityLogService] = None,
        firebase_service: Optional[FirebaseService] = None,
        analytics: Optional[AnalyticsService] = None,
    ):
        self.db = db or get_firestore_client()
        self.activity_log = activity_log or ActivityLogService(db=self.db)
        self.invoice_service = invoice_service or InvoiceService(db=self.db, activity_log=self.activity_log)
        self.billing_service = billing_service or BillingService(db=self.db, invoice_service=self.invoice_service)
        self.firebase_service = firebase_service or get_firebase_service()
        self.analytics = analytics or AnalyticsService(db=self.db)
        self.logger = logging.getLogger(__name__)
        self.handlers: Dict[str, EventHandler] = {
            'checkout.session.completed': self.handle_checkout_completed,
            'invoice.paid': self.handle_invoice_paid,
            'invoice.payment_succeeded': self.handle_invoice_payment_succeeded,
            'payment_intent.succeeded': self.handle_payment_intent_succeeded,
            'invoice.payment_failed': self.handle_payment_failed,
            'customer.subscription.updated': self.handle_subscription_updated,
            'customer.subscription.deleted': self.handle_subscription_deleted,
        }

    def _user_ref(self, uid: str):
        return self.db.collection('users').document(uid)

    def _subscription_ref(self, uid: str):
        return self._user_ref(uid).collection('membership').document('subscription')

    async def _lookup_user(self, customer_id: Optional[str], event_type: str) -> Optional[str]:
        if not customer_id:
            self.logger.warning(f"{event_type}: No customer on event, skipping")
            return None
        uid = await self.billing_service.find_uid_by_customer(customer_id)
        if uid is None:
            self.logger.warning(f"{event_type}: No user for customer {customer_id}, skipping")
        return uid

    async def _refresh_status_claim(self, uid: str, subscription_status: str):
        """Carry a new subscription status in the claims, keeping the stored plan"""
        user = await self._user_ref(uid).get()
        plan = (user.to_dict() or {}).get('plan') or FREE_PLAN
        self.firebase_service.set_plan_claim(uid, plan, subscription_status)

    async def dispatch(self, event: Dict[str, Any]) -> Dict[str, Any]:
        event_type = event.get('type')
        event_id = event.get('id')
        obj = (event.get('data') or {}).get('object') or {}
        self.logger.info(f"dispatch: Entry - {event_type}, event: {event_id}")

        handler = self.handlers.get(event_type)
        if handler is None:
            self.logger.info(f"dispatch: Ignored - {event_type}")
            return {'handled': False, 'event_type': event_type}

        try:
            result = await handler(obj)
            self.logger.info(f"dispatch: Success - {event_type}, {result}")
        except Exception as e:
            self.logger.error(f"dispatch: Failure - {event_type}, event: {event_id}: {e}")
            await self.analytics.log_failure(
                action='stripe_webhook',
                error=str(e),
                parameters={'event_type': event_type, 'event_id': event_id},
            )
            return {'handled': False, 'error': str(e)}

        if result.get('handled'):
            await self.analytics.log_success(
                action='stripe_webhook',
                user_id=result.get('uid'),
                parameters={'event_type': event_type, 'event_id': event_id},
            )
        return result

    async def handle_checkout_completed(self, session: Dict[str, Any]) -> Dict[str, Any]:
        if session.get('mode') != 'subscription':
            return {'handled': False, 'reason': 'not_subscription_checkout'}

        uid = await self._lookup_user(session.get('customer'), 'checkout.session.completed')
        if uid is None:
            return {'handled': False, 'reason': 'user_not_found'}

        subscription = self.billing_service.retrieve_subscription(session['subscription'])
        snapshot = subscription_snapshot(subscription)

        await self._subscription_ref(uid).set(snapshot.model_dump())
        await self._user_ref(uid).set({
            'plan': snapshot.plan,
            'stripe_subscription_id': snapshot.subscription_id,
            'stripe_subscription_status': snapshot.status,
            'updated_at': utc_now(),
        }, merge=True)
        self.firebase_service.set_plan_claim(uid, snapshot.plan, snapshot.status)

        return {'handled': True, 'uid': uid, 'plan': snapshot.plan}

    async def handle_invoice_paid(self, invoice: Dict[str, Any]) -> Dict[str, Any]:
        if not is_subscription_invoice(invoice):
            return {'handled': False, 'reason': 'not_subscription_invoice'}

        uid = await self._lookup_user(invoice.get('customer'), 'invoice.paid')
        if uid is None:
            return {'handled': False, 'reason': 'user_not_found'}

        record = BillingInvoice(
            stripe_invoice_id=invoice['id'],
            amount=(invoice.get('amount_paid') or 0) / 100,
            currency=invoice.get('currency') or settings.currency,
            status='paid',
            subscription_id=invoice.get('subscription'),
            hosted_invoice_url=invoice.get('hosted_invoice_url'),
            created=from_timestamp(invoice.get('created')),
            updated_at=utc_now(),
        )
        await self._user_ref(uid).collection('billing_invoices').document(invoice['id']).set(record.model_dump())

        return {'handled': True, 'uid': uid, 'stripe_invoice_id': invoice['id']}

    async def handle_invoice_payment_succeeded(self, invoice: Dict[str, Any]) -> Dict[str, Any]:
        """First or renewed subscription payment, e.g. a trial turning active"""
        subscription_id = invoice_subscription_id(invoice)
        if not is_subscription_invoice(invoice) or not subscription_id:
            return {'handled': False, 'reason': 'not_subscription_invoice'}

        uid = await self._lookup_user(invoice.get('customer'), 'invoice.payment_succeeded')
        if uid is None:
            return {'handled': False, 'reason': 'user_not_found'}

        subscription = self.billing_service.retrieve_subscription(subscription_id)
        subscription_status = subscription.get('status', 'active')
        now = utc_now()
        await self._subscription_ref(uid).set({'status': subscription_status, 'updated_at': now}, merge=True)
        await self._user_ref(uid).set({'stripe_subscription_status': subscription_status, 'updated_at': now}, merge=True)
        await self._refresh_status_claim(uid, subscription_status)

        return {'handled': True, 'uid': uid, 'status': subscription_status}

    async def handle_payment_intent_succeeded(self, intent: Dict[str, Any]) -> Dict[str, Any]:
        metadata = intent.get('metadata') or {}
        invoice_id = metadata.get('invoice_id')
        uid = metadata.get('firebase_uid')
        if not invoice_id or not uid:
            return {'handled': False, 'reason': 'not_invoice_payment'}

        invoice = await self.invoice_service.mark_paid(uid, invoice_id, payment_intent_id=intent.get('id'))

        # Secondary write: a failure here must not fail the delivery
        try:
            await self.activity_log.add_entry(
                uid,
                ActivityType.INVOICE,
                ActivityAction.UPDATED,
                f"Payment received for Invoice: {invoice.invoice_number}",
            )
        except Exception as e:
            self.logger.error(f"payment_intent.succeeded: Activity log failed - {e}")

        return {'handled': True, 'uid': uid, 'invoice_id': invoice_id}

    async def handle_payment_failed(self, invoice: Dict[str, Any]) -> Dict[str, Any]:
        if not is_subscription_invoice(invoice):
            return {'handled': False, 'reason': 'not_subscription_invoice'}

        uid = await self._lookup_user(invoice.get('customer'), 'invoice.payment_failed')
        if uid is None:
            return {'handled': False, 'reason': 'user_not_found'}

        now = utc_now()
        await self._subscription_ref(uid).set({'status': STATUS_PAST_DUE, 'updated_at': now}, merge=True)
        await self._user_ref(uid).set({'stripe_subscription_status': STATUS_PAST_DUE, 'updated_at': now}, merge=True)
        await self._refresh_status_claim(uid, STATUS_PAST_DUE)

        return {'handled': True, 'uid': uid, 'status': STATUS_PAST_DUE}

    async def handle_subscription_updated(self, subscription: Dict[str, Any]) -> Dict[str, Any]:
        uid = await self._lookup_user(subscription.get('customer'), 'customer.subscription.updated')
        if uid is None:
            return {'handled': False, 'reason': 'user_not_found'}

        snapshot = subscription_snapshot(subscription)
        await self._subscription_ref(uid).set(snapshot.model_dump())

        user_update = {
            'stripe_subscription_id': snapshot.subscription_id,
            'stripe_subscription_status': snapshot.status,
            'updated_at': utc_now(),
        }
        if snapshot.status in ENTITLED_STATUSES:
            user_update['plan'] = snapshot.plan
        await self._user_ref(uid).set(user_update, merge=True)
        if snapshot.status in ENTITLED_STATUSES:
            self.firebase_service.set_plan_claim(uid, snapshot.plan, snapshot.status)
        else:
            await self._refresh_status_claim(uid, snapshot.status)

        return {'handled': True, 'uid': uid, 'status': snapshot.status}

    async def handle_subscription_deleted(self, subscription: Dict[str, Any]) -> Dict[str, Any]:
        uid = await self._lookup_user(subscription.get('customer'), 'customer.subscription.deleted')
        if uid is None:
            return {'handled': False, 'reason': 'user_not_found'}

        now = utc_now()
        await self._subscription_ref(uid).set({
            'status': STATUS_CANCELED,
            'ended_at': from_timestamp(subscription.get('ended_at')) or now,
            'updated_at': now,
        }, merge=True)
        await self._user_ref(uid).set({
            'plan': FREE_PLAN,
            'stripe_subscription_status': STATUS_CANCELED,
            'updated_at': now,
        }, merge=True)
        self.firebase_service.revoke_plan_claim(uid)

        return {'handled': True, 'uid': uid, 'status': STATUS_CANCELED}


def get_reconciler() -> StripeEventReconciler:
    """Dependency to get the reconciler instance"""
    return StripeEventReconciler()


@router.post("/stripe")
async def handle_stripe_webhook(
    request: Request,
    reconciler: StripeEventReconciler = Depends(get_reconciler),
):
    """Receive a signed Stripe event.

    Unverifiable deliveries get a 400 and change nothing. Verified ones are
    always acknowledged with 200 so that a failed secondary write does not
    trigger Stripe's retry policy.
    """
    payload = await request.body()
    sig_header = request.headers.get('stripe-signature')
    logger.info(f"handle_stripe_webhook: Entry - {len(payload)} bytes")

    if not sig_header:
        logger.error("handle_stripe_webhook: Failure - missing signature header")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Missing Stripe-Signature header"})

    try:
        event = verify_event(payload, sig_header)
    except stripe.SignatureVerificationError as e:
        logger.error(f"handle_stripe_webhook: Failure - invalid signature: {e}")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid signature"})
    except ValueError as e:
        logger.error(f"handle_stripe_webhook: Failure - invalid payload: {e}")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid payload"})

    await reconciler.dispatch(event)
    logger.info(f"handle_stripe_webhook: Success - {event.get('type')}")
    return {"received": True}
