import json
import logging
from typing import Optional, Dict, Any, List, Union
import redis
from redis.exceptions import RedisError, ConnectionError as RedisConnectionError
from taskbit.core.config import settings

logger = logging.getLogger(__name__)


class RedisCache:
    """Redis-backed cache for per-owner dashboard views"""

    def __init__(self, client: Optional[redis.Redis] = None):
        """Initialize Redis cache (lazy connection unless a client is injected)"""
        self._client: Optional[redis.Redis] = client
        self._connected = client is not None

    def _connect(self):
        """Connect to Redis server; failures leave the cache disabled"""
        try:
            client_kwargs: Dict[str, Any] = {
                'decode_responses': False,
                'socket_connect_timeout': 2,
                'socket_timeout': 2,
                'retry_on_timeout': False,
            }
            # settings.redis_password takes precedence over a password in the URL
            if settings.redis_password:
                client_kwargs['password'] = settings.redis_password
            if settings.redis_url:
                self._client = redis.from_url(settings.redis_url, **client_kwargs)
            else:
                self._client = redis.Redis(host='localhost', port=6379, db=settings.redis_db, **client_kwargs)

            self._client.ping()
            self._connected = True
            logger.info("RedisCache: Connected to Redis")
        except RedisConnectionError as e:
            logger.warning(f"RedisCache: Failed to connect to Redis - {e}")
            self._connected = False
            self._client = None
        except RedisError as e:
            logger.error(f"RedisCache: Redis error during connection - {e}")
            self._connected = False
            self._client = None

    def _ensure_connected(self) -> bool:
        if not self._connected or self._client is None:
            self._connect()
        return self._client is not None

    def get(self, key: str) -> Optional[Union[Dict, List]]:
        """Get cached value if not expired"""
        if not self._ensure_connected():
            logger.warning(f"RedisCache: Cannot get key {key} - Redis not available")
            return None

        try:
            data = self._client.get(key)
            if data is None:
                logger.debug(f"Cache miss: {key}")
                return None

            try:
                decoded = json.loads(data.decode('utf-8'))
                logger.debug(f"Cache hit: {key}")
                return decoded
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                logger.warning(f"RedisCache: Failed to decode value for key {key}: {e}")
                self._client.delete(key)
                return None
        except RedisError as e:
            logger.error(f"RedisCache: Error getting key {key}: {e}")
            self._connected = False
            return None

    def set(self, key: str, value: Union[Dict, List], ttl_minutes: int):
        """Set cache value with TTL in minutes"""
        if not self._ensure_connected():
            logger.warning(f"RedisCache: Cannot set key {key} - Redis not available")
            return

        try:
            serialized = json.dumps(value, default=str).encode('utf-8')
            self._client.setex(key, ttl_minutes * 60, serialized)
            logger.debug(f"Cache set: {key}, TTL: {ttl_minutes} minutes")
        except RedisError as e:
            logger.error(f"RedisCache: Error setting key {key}: {e}")
            self._connected = False

    def delete(self, *keys: str):
        """Delete cache entries"""
        if not keys:
            return
        if not self._ensure_connected():
            logger.warning(f"RedisCache: Cannot delete keys {keys} - Redis not available")
            return

        try:
            self._client.delete(*keys)
            logger.debug(f"Cache deleted: {keys}")
        except RedisError as e:
            logger.error(f"RedisCache: Error deleting keys {keys}: {e}")
            self._connected = False

    def ping(self) -> bool:
        """Check if Redis connection is alive"""
        if not self._ensure_connected():
            return False
        try:
            self._client.ping()
            return True
        except RedisError:
            self._connected = False
            return False
