import logging
from typing import Any, Dict, Optional
from taskbit.core.clock import utc_now
from taskbit.core.firebase_service import get_firestore_client
from taskbit.models.activity_log import ActivityType, ActivityAction
from taskbit.services.activity_log_service import ActivityLogService

logger = logging.getLogger(__name__)

# Field names used by the legacy per-user time entries
LEGACY_FIELDS = {
    'projectId': 'project_id',
    'projectName': 'project_name',
    'taskId': 'task_id',
    'taskName': 'task_name',
    'startTime': 'start_time',
    'endTime': 'end_time',
    'duration': 'duration_seconds',
    'createdAt': 'created_at',
    'updatedAt': 'updated_at',
}


def normalize_legacy_entry(data: Dict[str, Any]) -> Dict[str, Any]:
    return {LEGACY_FIELDS.get(key, key): value for key, value in data.items()}


class MigrationService:
    """
    Moves legacy users/{uid}/time_entries into their project's subcollection.

    Each entry is copied under the same id and only then deleted from the
    legacy location, so a run interrupted half way can simply be repeated.
    """

    def __init__(self, db=None, activity_log: Optional[ActivityLogService] = None):
        self.db = db or get_firestore_client()
        self.activity_log = activity_log or ActivityLogService(db=self.db)
        self.logger = logging.getLogger(__name__)

    def _user_ref(self, uid: str):
        return self.db.collection('users').document(uid)

    async def migrate_time_entries(self, uid: str) -> Dict[str, int]:
        self.logger.info(f"migrate_time_entries: Entry - user: {uid}")

        legacy = [doc async for doc in self._user_ref(uid).collection('time_entries').stream()]
        if not legacy:
            self.logger.info(f"migrate_time_entries: Nothing to migrate - user: {uid}")
            return {'migrated': 0, 'skipped': 0}

        await self.activity_log.add_entry(
            uid,
            ActivityType.SYSTEM,
            ActivityAction.MIGRATION,
            f"Started time entry migration ({len(legacy)} entries)",
        )

        migrated = 0
        skipped = 0
        for doc in legacy:
            data = normalize_legacy_entry(doc.to_dict())
            project_id = data.get('project_id')
            if not project_id:
                self.logger.warning(f"migrate_time_entries: Entry {doc.id} has no project, left in place")
                skipped += 1
                continue

            project_ref = self._user_ref(uid).collection('projects').document(project_id)
            project = await project_ref.get()
            if not project.exists:
                self.logger.warning(f"migrate_time_entries: Project {project_id} missing for entry {doc.id}, left in place")
                skipped += 1
                continue

            if data.get('duration_seconds') is None and data.get('start_time') and data.get('end_time'):
                data['duration_seconds'] = int((data['end_time'] - data['start_time']).total_seconds())
            data.update({
                'uid': uid,
                'project_name': data.get('project_name') or project.to_dict().get('name'),
                'migrated_at': utc_now(),
            })
            await project_ref.collection('time_entries').document(doc.id).set(data)
            await doc.reference.delete()
            migrated += 1

        await self.activity_log.add_entry(
            uid,
            ActivityType.SYSTEM,
            ActivityAction.MIGRATION,
            f"Migrated {migrated} time entries ({skipped} skipped)",
        )
        self.logger.info(f"migrate_time_entries: Success - user: {uid}, migrated: {migrated}, skipped: {skipped}")
        return {'migrated': migrated, 'skipped': skipped}
