import logging
from typing import List, Optional, Tuple
from urllib.parse import urlencode
from taskbit.core.clock import utc_now
from taskbit.core.config import settings
from taskbit.core.exceptions import NotFoundError
from taskbit.core.firebase_service import get_firestore_client
from taskbit.core.security import decrypt_portal_token, encrypt_portal_token
from taskbit.models.activity_log import ActivityType, ActivityAction
from taskbit.models.client import Client, ClientCreate, ClientUpdate, PortalSettings, PortalSettingsUpdate
from taskbit.services.activity_log_service import ActivityLogService
from taskbit.services.invoice_service import InvoiceService
from taskbit.services.project_service import ProjectService

logger = logging.getLogger(__name__)


class ClientService:
    """Clients, their portal settings and the client-portal read model"""

    def __init__(
        self,
        db=None,
        activity_log: Optional[ActivityLogService] = None,
        project_service: Optional[ProjectService] = None,
        invoice_service: Optional[InvoiceService] = None,
    ):
        self.db = db or get_firestore_client()
        self.activity_log = activity_log or ActivityLogService(db=self.db)
        self.project_service = project_service or ProjectService(db=self.db, activity_log=self.activity_log)
        self.invoice_service = invoice_service or InvoiceService(db=self.db, activity_log=self.activity_log)
        self.logger = logging.getLogger(__name__)

    def _clients(self, uid: str):
        return self.db.collection('users').document(uid).collection('clients')

    def _portal_settings_ref(self, uid: str, client_id: str):
        return self._clients(uid).document(client_id).collection('portal_settings').document('default')

    async def _require_client(self, uid: str, client_id: str):
        snapshot = await self._clients(uid).document(client_id).get()
        if not snapshot.exists:
            raise NotFoundError("Client", client_id)
        return snapshot

    async def create_client(self, uid: str, payload: ClientCreate) -> Client:
        self.logger.info(f"create_client: Entry - user: {uid}, name: {payload.name}")

        try:
            now = utc_now()
            ref = self._clients(uid).document()
            data = {**payload.model_dump(), 'uid': uid, 'created_at': now, 'updated_at': now}
            await ref.set(data)
            await self._portal_settings_ref(uid, ref.id).set(PortalSettings(updated_at=now).model_dump())
            await self.activity_log.add_entry(
                uid, ActivityType.CLIENT, ActivityAction.CREATED, f"Created Client: {payload.name}"
            )
            self.logger.info(f"create_client: Success - {ref.id}")
            return Client(id=ref.id, **data)
        except Exception as e:
            self.logger.error(f"create_client: Failure - {e}")
            raise

    async def get_client(self, uid: str, client_id: str) -> Client:
        snapshot = await self._require_client(uid, client_id)
        return Client(id=snapshot.id, **snapshot.to_dict())

    async def list_clients(self, uid: str) -> List[Client]:
        query = self._clients(uid).order_by('name')
        return [Client(id=doc.id, **doc.to_dict()) async for doc in query.stream()]

    async def update_client(self, uid: str, client_id: str, payload: ClientUpdate) -> Client:
        self.logger.info(f"update_client: Entry - user: {uid}, client: {client_id}")

        snapshot = await self._require_client(uid, client_id)
        current = snapshot.to_dict()
        changes = payload.model_dump(exclude_unset=True)
        changes['updated_at'] = utc_now()

        try:
            await snapshot.reference.update(changes)
            merged = {**current, **changes}
            await self.activity_log.add_entry(
                uid, ActivityType.CLIENT, ActivityAction.UPDATED, f"Updated Client: {merged.get('name')}"
            )
            self.logger.info(f"update_client: Success - {client_id}")
            return Client(id=client_id, **merged)
        except Exception as e:
            self.logger.error(f"update_client: Failure - {e}")
            raise

    async def delete_client(self, uid: str, client_id: str):
        self.logger.info(f"delete_client: Entry - user: {uid}, client: {client_id}")

        snapshot = await self._require_client(uid, client_id)

        try:
            await self._portal_settings_ref(uid, client_id).delete()
            await snapshot.reference.delete()
            await self.activity_log.add_entry(
                uid,
                ActivityType.CLIENT,
                ActivityAction.DELETED,
                f"Deleted Client: {snapshot.to_dict().get('name')}",
            )
            self.logger.info(f"delete_client: Success - {client_id}")
        except Exception as e:
            self.logger.error(f"delete_client: Failure - {e}")
            raise

    # Portal

    async def get_portal_settings(self, uid: str, client_id: str) -> PortalSettings:
        """Stored settings, or the all-enabled defaults when none were saved"""
        await self._require_client(uid, client_id)
        snapshot = await self._portal_settings_ref(uid, client_id).get()
        if not snapshot.exists:
            return PortalSettings()
        return PortalSettings(**snapshot.to_dict())

    async def update_portal_settings(
        self,
        uid: str,
        client_id: str,
        payload: PortalSettingsUpdate,
    ) -> PortalSettings:
        self.logger.info(f"update_portal_settings: Entry - user: {uid}, client: {client_id}")

        client = await self.get_client(uid, client_id)
        changes = payload.model_dump(exclude_unset=True)
        changes['updated_at'] = utc_now()

        await self._portal_settings_ref(uid, client_id).set(changes, merge=True)
        await self.activity_log.add_entry(
            uid, ActivityType.CLIENT, ActivityAction.UPDATED, f"Updated Portal Settings for {client.name}"
        )
        self.logger.info(f"update_portal_settings: Success - {client_id}")
        return await self.get_portal_settings(uid, client_id)

    async def generate_portal_link(self, uid: str, client_id: str) -> str:
        await self._require_client(uid, client_id)
        token = encrypt_portal_token(uid, client_id)
        return f"{settings.frontend_url}/client-portal?{urlencode({'token': token})}"

    async def resolve_portal_token(self, token: str) -> Tuple[str, Client]:
        """Owner id and client behind a portal token; deleted clients are not found"""
        payload = decrypt_portal_token(token)
        client = await self.get_client(payload['uid'], payload['client_id'])
        return payload['uid'], client

    async def get_portal_view(self, token: str) -> dict:
        """What the client sees, filtered by the owner's portal settings"""
        self.logger.info("get_portal_view: Entry")

        uid, client = await self.resolve_portal_token(token)
        portal_settings = await self.get_portal_settings(uid, client.id)

        projects = []
        if portal_settings.allow_project_view:
            projects = await self.project_service.get_projects_for_client(uid, client.id)
        invoices = []
        if portal_settings.allow_invoice_view:
            invoices = await self.invoice_service.get_invoices_for_client(uid, client.id)

        self.logger.info(f"get_portal_view: Success - client: {client.id}")
        return {
            'client': client,
            'settings': portal_settings,
            'projects': projects,
            'invoices': invoices,
        }
