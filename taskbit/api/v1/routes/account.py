from fastapi import APIRouter, Depends
from taskbit.core.cache import revalidate_owner_views
from taskbit.core.middleware import get_current_user, get_db
from taskbit.models.user import UserProfile
from taskbit.services.billing_service import BillingService
from taskbit.services.migration_service import MigrationService
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


def get_migration_service(db=Depends(get_db)) -> MigrationService:
    """Dependency to get migration service instance"""
    return MigrationService(db=db)


def get_billing_service(db=Depends(get_db)) -> BillingService:
    """Dependency to get billing service instance"""
    return BillingService(db=db)


@router.get("/me")
async def get_profile(
    current_user: dict = Depends(get_current_user),
    billing_service: BillingService = Depends(get_billing_service),
) -> UserProfile:
    """Stored profile of the caller; a user with no document yet is on the free plan"""
    stored = await billing_service.get_user(current_user['uid'])
    return UserProfile(**{'uid': current_user['uid'], 'email': current_user.get('email'), **stored})


@router.post("/migrate-time-entries")
async def migrate_time_entries(
    current_user: dict = Depends(get_current_user),
    migration_service: MigrationService = Depends(get_migration_service),
):
    """Move the caller's legacy time entries under their projects; safe to repeat"""
    result = await migration_service.migrate_time_entries(current_user['uid'])
    if result['migrated']:
        revalidate_owner_views(current_user['uid'])
    return result
