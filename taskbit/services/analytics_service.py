import logging
from typing import Optional
from taskbit.core.clock import utc_now
from taskbit.core.firebase_service import get_firestore_client

logger = logging.getLogger(__name__)


class AnalyticsService:
    """
    Operational success/failure tracking stored in Firestore.

    Nothing here ever raises: a tracking failure must not break the
    operation being tracked.
    """

    def __init__(self, db=None):
        self.db = db or get_firestore_client()
        self.analytics_collection = 'analytics_events'
        self.crashlytics_collection = 'crashlytics_errors'
        self.logger = logging.getLogger(__name__)

    async def log_event(
        self,
        event_name: str,
        user_id: Optional[str] = None,
        parameters: Optional[dict] = None,
    ):
        logger.info(f"log_event: Entry - {event_name}, user: {user_id}")

        try:
            await self.db.collection(self.analytics_collection).add({
                'event_name': event_name,
                'user_id': user_id,
                'parameters': parameters or {},
                'timestamp': utc_now(),
            })
            logger.info(f"log_event: Success - {event_name}")
        except Exception as e:
            logger.error(f"log_event: Failure - {e}")

    async def log_crash(
        self,
        error: str,
        action: str,
        user_id: Optional[str] = None,
        parameters: Optional[dict] = None,
    ):
        logger.info(f"log_crash: Entry - {action}, error: {error}")

        try:
            await self.db.collection(self.crashlytics_collection).add({
                'action': action,
                'user_id': user_id,
                'error_message': error,
                'parameters': parameters or {},
                'timestamp': utc_now(),
            })
            logger.info(f"log_crash: Success - {action}")
        except Exception as e:
            logger.error(f"log_crash: Failure - {e}")

    async def log_success(self, action: str, user_id: Optional[str] = None, parameters: Optional[dict] = None):
        await self.log_event(
            event_name=f'{action}_success',
            user_id=user_id,
            parameters={'status': 'success', **(parameters or {})},
        )

    async def log_failure(
        self,
        action: str,
        error: str,
        user_id: Optional[str] = None,
        parameters: Optional[dict] = None,
    ):
        """Record the failure both as a metric event and as an error report"""
        await self.log_event(
            event_name=f'{action}_failure',
            user_id=user_id,
            parameters={'status': 'failure', 'error': error, **(parameters or {})},
        )
        await self.log_crash(error=error, action=action, user_id=user_id, parameters=parameters)
