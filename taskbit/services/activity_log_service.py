import logging
from typing import List
from firebase_admin import firestore
from taskbit.core.clock import utc_now
from taskbit.core.firebase_service import get_firestore_client
from taskbit.models.activity_log import ActivityLog, ActivityType, ActivityAction

logger = logging.getLogger(__name__)


class ActivityLogService:
    """Append-only audit trail under users/{uid}/activity_log"""

    def __init__(self, db=None):
        self.db = db or get_firestore_client()
        self.logger = logging.getLogger(__name__)

    def _collection(self, uid: str):
        return self.db.collection('users').document(uid).collection('activity_log')

    async def add_entry(
        self,
        uid: str,
        type: ActivityType,
        action: ActivityAction,
        description: str,
    ) -> ActivityLog:
        """Append one entry; the timestamp is assigned here, never by the caller"""
        self.logger.info(f"add_entry: Entry - user: {uid}, {ActivityType(type).value}/{ActivityAction(action).value}")

        try:
            ref = self._collection(uid).document()
            entry = ActivityLog(
                id=ref.id,
                uid=uid,
                timestamp=utc_now(),
                type=type,
                action=action,
                description=description,
            )
            await ref.set(entry.model_dump(exclude={'id'}))
            self.logger.info(f"add_entry: Success - {ref.id}")
            return entry
        except Exception as e:
            self.logger.error(f"add_entry: Failure - {e}")
            raise

    async def get_recent_activity(self, uid: str, limit: int = 5) -> List[ActivityLog]:
        """Newest entries first"""
        self.logger.info(f"get_recent_activity: Entry - user: {uid}, limit: {limit}")

        try:
            query = (
                self._collection(uid)
                .order_by('timestamp', direction=firestore.Query.DESCENDING)
                .limit(limit)
            )
            entries = [ActivityLog(id=doc.id, **doc.to_dict()) async for doc in query.stream()]
            self.logger.info(f"get_recent_activity: Success - {len(entries)} entries")
            return entries
        except Exception as e:
            self.logger.error(f"get_recent_activity: Failure - {e}")
            raise
