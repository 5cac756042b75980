import logging
from typing import Optional, Dict, List, Union
from taskbit.core.config import settings
from taskbit.core.redis_cache import RedisCache

logger = logging.getLogger(__name__)

# Cached per-owner views; every mutation in the action layer drops all of them
DASHBOARD_VIEWS = ("summary", "recent_projects", "recent_activity", "upcoming_tasks")


# Global cache instance
_cache_instance: Optional[RedisCache] = None


def get_cache() -> RedisCache:
    """Get global Redis cache instance"""
    global _cache_instance
    if _cache_instance is None:
        _cache_instance = RedisCache()
    return _cache_instance


def set_cache(cache: Optional[RedisCache]):
    """Set global cache instance (for testing)"""
    global _cache_instance
    _cache_instance = cache


def _view_key(uid: str, view: str) -> str:
    return f"taskbit:{uid}:{view}"


def get_cached_view(uid: str, view: str) -> Optional[Union[Dict, List]]:
    """Get a cached dashboard view for the owner."""
    return get_cache().get(_view_key(uid, view))


def set_cached_view(uid: str, view: str, value: Union[Dict, List], ttl_minutes: Optional[int] = None):
    """Cache a dashboard view for the owner."""
    ttl = ttl_minutes if ttl_minutes is not None else settings.dashboard_cache_ttl_minutes
    get_cache().set(_view_key(uid, view), value, ttl)


def revalidate_owner_views(uid: str):
    """Drop every cached view of the owner after a successful mutation."""
    logger.info(f"revalidate_owner_views: Entry - {uid}")
    get_cache().delete(*[_view_key(uid, view) for view in DASHBOARD_VIEWS])
