import logging
from datetime import datetime
from typing import List, Optional
from google.api_core.exceptions import Conflict
from firebase_admin import firestore
from taskbit.core.clock import utc_now
from taskbit.core.exceptions import ExternalServiceError, InvalidStateError, NotFoundError
from taskbit.core.firebase_service import get_firestore_client
from taskbit.models.activity_log import ActivityType, ActivityAction
from taskbit.models.invoice import (
    CLIENT_VISIBLE_STATUSES,
    Invoice,
    InvoiceCreate,
    InvoiceStatus,
    InvoiceUpdate,
    can_transition,
    items_total,
)
from taskbit.services.activity_log_service import ActivityLogService

logger = logging.getLogger(__name__)

MAX_NUMBER_ATTEMPTS = 50


def format_invoice_number(year: int, sequence: int) -> str:
    return f"INV-{year}-{sequence:03d}"


def parse_invoice_sequence(invoice_number: str) -> int:
    return int(invoice_number.rsplit('-', 1)[1])


class InvoiceService:
    """Invoices under users/{uid}/invoices with per-year sequential numbers"""

    def __init__(self, db=None, activity_log: Optional[ActivityLogService] = None):
        self.db = db or get_firestore_client()
        self.activity_log = activity_log or ActivityLogService(db=self.db)
        self.logger = logging.getLogger(__name__)

    def _invoices(self, uid: str):
        return self.db.collection('users').document(uid).collection('invoices')

    def _number_reservations(self, uid: str):
        return self.db.collection('users').document(uid).collection('invoice_numbers')

    async def _require_invoice(self, uid: str, invoice_id: str):
        snapshot = await self._invoices(uid).document(invoice_id).get()
        if not snapshot.exists:
            raise NotFoundError("Invoice", invoice_id)
        return snapshot

    # Numbering

    async def next_invoice_number(self, uid: str, year: int) -> str:
        """
        Read the highest number issued this year and return the one after it.

        This is a plain read-then-write scan: two callers running at the same
        time can both get the same answer. create_invoice only uses it as a
        lower bound for reserve_invoice_number.
        """
        query = (
            self._invoices(uid)
            .where(filter=firestore.FieldFilter('invoice_year', '==', year))
            .order_by('invoice_seq', direction=firestore.Query.DESCENDING)
            .limit(1)
        )
        latest = [doc async for doc in query.stream()]
        if not latest:
            return format_invoice_number(year, 1)
        return format_invoice_number(year, latest[0].get('invoice_seq') + 1)

    async def _last_reserved_sequence(self, uid: str, year: int) -> int:
        query = (
            self._number_reservations(uid)
            .where(filter=firestore.FieldFilter('year', '==', year))
            .order_by('sequence', direction=firestore.Query.DESCENDING)
            .limit(1)
        )
        latest = [doc async for doc in query.stream()]
        return latest[0].get('sequence') if latest else 0

    async def reserve_invoice_number(self, uid: str, year: int, invoice_id: str) -> str:
        """
        Claim a number with create-if-absent on invoice_numbers/{number}.

        Reservations are never deleted, so the scan starts past every number
        ever issued. The store rejects a second create of the same document,
        so a caller that lost the race moves on to the next number instead of
        duplicating.
        """
        issued = parse_invoice_sequence(await self.next_invoice_number(uid, year))
        sequence = max(issued, await self._last_reserved_sequence(uid, year) + 1)

        for _ in range(MAX_NUMBER_ATTEMPTS):
            candidate = format_invoice_number(year, sequence)
            try:
                await self._number_reservations(uid).document(candidate).create({
                    'invoice_id': invoice_id,
                    'year': year,
                    'sequence': sequence,
                    'created_at': utc_now(),
                })
                return candidate
            except Conflict:
                self.logger.info(f"reserve_invoice_number: {candidate} already taken, trying next")
                sequence += 1

        raise ExternalServiceError("firestore", "Could not allocate an invoice number")

    # CRUD

    async def create_invoice(self, uid: str, payload: InvoiceCreate) -> Invoice:
        self.logger.info(f"create_invoice: Entry - user: {uid}, client: {payload.client_name}")

        try:
            now = utc_now()
            ref = self._invoices(uid).document()
            invoice_number = await self.reserve_invoice_number(uid, now.year, ref.id)
            data = {
                **payload.model_dump(),
                'uid': uid,
                'invoice_number': invoice_number,
                'invoice_year': now.year,
                'invoice_seq': parse_invoice_sequence(invoice_number),
                'total_amount': items_total(payload.items),
                'created_at': now,
                'updated_at': now,
            }
            if payload.status == InvoiceStatus.PAID.value:
                data['paid_at'] = now
            await ref.set(data)
            await self.activity_log.add_entry(
                uid, ActivityType.INVOICE, ActivityAction.CREATED, f"Created Invoice: {invoice_number}"
            )
            self.logger.info(f"create_invoice: Success - {ref.id}, {invoice_number}")
            return Invoice(id=ref.id, **data)
        except Exception as e:
            self.logger.error(f"create_invoice: Failure - {e}")
            raise

    async def get_invoice(self, uid: str, invoice_id: str) -> Invoice:
        snapshot = await self._require_invoice(uid, invoice_id)
        return Invoice(id=snapshot.id, **snapshot.to_dict())

    async def list_invoices(self, uid: str, status: Optional[str] = None) -> List[Invoice]:
        self.logger.info(f"list_invoices: Entry - user: {uid}, status: {status}")

        query = self._invoices(uid)
        if status:
            query = query.where(filter=firestore.FieldFilter('status', '==', status))
        query = query.order_by('created_at', direction=firestore.Query.DESCENDING)
        invoices = [Invoice(id=doc.id, **doc.to_dict()) async for doc in query.stream()]
        self.logger.info(f"list_invoices: Success - {len(invoices)} invoices")
        return invoices

    async def get_invoices_for_client(self, uid: str, client_id: str) -> List[Invoice]:
        """Invoices a client may see: sent, paid or overdue"""
        query = (
            self._invoices(uid)
            .where(filter=firestore.FieldFilter('client_id', '==', client_id))
            .where(filter=firestore.FieldFilter('status', 'in', CLIENT_VISIBLE_STATUSES))
        )
        invoices = [Invoice(id=doc.id, **doc.to_dict()) async for doc in query.stream()]
        invoices.sort(key=lambda invoice: invoice.issue_date, reverse=True)
        return invoices

    async def update_invoice(self, uid: str, invoice_id: str, payload: InvoiceUpdate) -> Invoice:
        """
        Content fields are editable only while the invoice is a draft; status
        moves only along the one-way lifecycle.
        """
        self.logger.info(f"update_invoice: Entry - user: {uid}, invoice: {invoice_id}")

        snapshot = await self._require_invoice(uid, invoice_id)
        current = snapshot.to_dict()
        changes = payload.model_dump(exclude_unset=True)
        current_status = current.get('status')
        new_status = changes.get('status')
        content_changes = {key for key in changes if key != 'status'}

        if content_changes and current_status != InvoiceStatus.DRAFT.value:
            raise InvalidStateError(f"Invoice {current.get('invoice_number')} is {current_status} and can no longer be edited")
        if new_status and not can_transition(current_status, new_status):
            raise InvalidStateError(f"Invoice cannot move from {current_status} to {new_status}")

        if payload.items is not None:
            changes['total_amount'] = items_total(payload.items)
        now = utc_now()
        changes['updated_at'] = now
        if new_status == InvoiceStatus.PAID.value and current_status != InvoiceStatus.PAID.value:
            changes['paid_at'] = now

        try:
            await snapshot.reference.update(changes)
            number = current.get('invoice_number')
            if new_status and new_status != current_status:
                await self.activity_log.add_entry(
                    uid,
                    ActivityType.INVOICE,
                    ActivityAction.UPDATED,
                    f"Updated Invoice Status: {number} to {new_status}",
                )
            if content_changes:
                await self.activity_log.add_entry(
                    uid, ActivityType.INVOICE, ActivityAction.UPDATED, f"Updated Invoice: {number}"
                )
            self.logger.info(f"update_invoice: Success - {invoice_id}")
            return Invoice(id=invoice_id, **{**current, **changes})
        except Exception as e:
            self.logger.error(f"update_invoice: Failure - {e}")
            raise

    async def delete_invoice(self, uid: str, invoice_id: str, force: bool = False):
        """Only drafts are deleted without force; the number stays reserved either way"""
        self.logger.info(f"delete_invoice: Entry - user: {uid}, invoice: {invoice_id}, force: {force}")

        snapshot = await self._require_invoice(uid, invoice_id)
        current = snapshot.to_dict()
        if current.get('status') != InvoiceStatus.DRAFT.value and not force:
            raise InvalidStateError(
                f"Invoice {current.get('invoice_number')} is {current.get('status')}; pass force to delete it"
            )

        try:
            await snapshot.reference.delete()
            await self.activity_log.add_entry(
                uid,
                ActivityType.INVOICE,
                ActivityAction.DELETED,
                f"Deleted Invoice: {current.get('invoice_number')}",
            )
            self.logger.info(f"delete_invoice: Success - {invoice_id}")
        except Exception as e:
            self.logger.error(f"delete_invoice: Failure - {e}")
            raise

    # Status helpers

    async def mark_sent(self, uid: str, invoice_id: str) -> Invoice:
        """Promote a draft to sent; sent and overdue invoices are left as they are"""
        invoice = await self.get_invoice(uid, invoice_id)
        if invoice.status != InvoiceStatus.DRAFT.value:
            return invoice
        return await self.update_invoice(uid, invoice_id, InvoiceUpdate(status=InvoiceStatus.SENT))

    async def mark_paid(self, uid: str, invoice_id: str, payment_intent_id: Optional[str] = None) -> Invoice:
        """
        Set status paid from any state. Re-applying writes the same status
        again, so a replayed payment event is harmless.
        """
        self.logger.info(f"mark_paid: Entry - user: {uid}, invoice: {invoice_id}")

        snapshot = await self._require_invoice(uid, invoice_id)
        current = snapshot.to_dict()
        now = utc_now()
        changes = {
            'status': InvoiceStatus.PAID.value,
            'paid_at': current.get('paid_at') or now,
            'updated_at': now,
        }
        if payment_intent_id:
            changes['stripe_payment_intent_id'] = payment_intent_id
        await snapshot.reference.update(changes)
        self.logger.info(f"mark_paid: Success - {invoice_id}")
        return Invoice(id=invoice_id, **{**current, **changes})

    async def mark_overdue_invoices(self, uid: str, now: Optional[datetime] = None) -> int:
        """Sweep: sent invoices past their due date become overdue"""
        self.logger.info(f"mark_overdue_invoices: Entry - user: {uid}")

        now = now or utc_now()
        count = 0
        for invoice in await self.list_invoices(uid, status=InvoiceStatus.SENT.value):
            if invoice.due_date < now:
                await self.update_invoice(uid, invoice.id, InvoiceUpdate(status=InvoiceStatus.OVERDUE))
                count += 1

        self.logger.info(f"mark_overdue_invoices: Success - {count} invoices")
        return count

    async def set_payment_fields(self, uid: str, invoice_id: str, **fields):
        """Store Stripe payment link / intent identifiers on the invoice"""
        snapshot = await self._require_invoice(uid, invoice_id)
        await snapshot.reference.update({**fields, 'updated_at': utc_now()})
