"""
Redis Cache Service for tenant metadata.
Cache-aside with explicit invalidation and graceful degradation.

The cache is never a source of truth: a Redis outage or timeout is logged
and the read falls through to the primary store. Writes never go to the
cache; they commit to the store and then call `invalidate()` before
returning to their caller.

Each cached entry is stored with the generation of its key at the time the
value was loaded. `invalidate()` bumps the generation, so a reader that
loaded a pre-write value concurrently with a writer cannot make that value
visible after the writer returned.

An invalidation that cannot reach Redis (after one retry) leaves its keys
in a process-local pending set. Reads of a pending key bypass the cache
until an invalidation of that key succeeds.
"""

import logging
import json
import threading
from typing import Any, Optional, Callable, Dict, List
from datetime import datetime, date
from decimal import Decimal

import redis
from redis.exceptions import RedisError
from flask import Flask

from farm_tenancy.blueprints.metrics import cache_requests_total
from farm_tenancy.exceptions import CacheUnavailableError, StoreUnavailableError

logger = logging.getLogger(__name__)

TENANT_CACHE_SECTIONS = ('config', 'subscription', 'limits', 'custom_fields')


class CacheService:
    """
    Redis-based caching service with multi-tenant key namespacing.

    Keys pattern: {prefix}:tenant:{tenant_id}:{section}
    """

    def __init__(self, app: Optional[Flask] = None, client: Optional[redis.Redis] = None):
        """Initialize cache service."""
        self.client: Optional[redis.Redis] = client
        self._enabled: bool = client is not None
        self._prefix: str = "farm"
        self._default_ttl: int = 300
        self._pending: set = set()
        self._pending_lock = threading.Lock()

        if app:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        """Initialize Redis client from Flask app config."""
        self._enabled = app.config.get('CACHE_ENABLED', True)
        self._prefix = app.config.get('CACHE_KEY_PREFIX', 'farm')
        self._default_ttl = app.config.get('CACHE_DEFAULT_TTL', 300)

        if not self._enabled:
            logger.info("[CACHE] Cache is DISABLED via config")
            return

        if self.client is not None:
            return

        socket_timeout = app.config.get('CACHE_SOCKET_TIMEOUT', 0.5)
        redis_url = app.config.get('REDIS_URL', 'redis://redis:6379/0')
        self.client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=socket_timeout,
            socket_timeout=socket_timeout,
            socket_keepalive=True,
            max_connections=50,
            retry_on_timeout=False,
            health_check_interval=30
        )
        try:
            self.client.ping()
            logger.info(f"[CACHE] Redis connected: {redis_url}")
        except RedisError as e:
            # Keep the client: every call degrades to the store until Redis is back
            logger.warning(f"[CACHE] Redis connection failed: {e}. Reads will fall back to the store.")

    def is_available(self) -> bool:
        """Check if cache is available and healthy."""
        if not self._enabled or not self.client:
            return False
        try:
            self.client.ping()
            return True
        except RedisError:
            return False

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def tenant_key(self, tenant_id: str, section: str) -> str:
        """Build tenant-namespaced cache key, e.g. farm:tenant:org_123:config."""
        return f"{self._prefix}:tenant:{tenant_id}:{section}"

    def tenant_keys(self, tenant_id: str) -> List[str]:
        """Every cache key held for a tenant."""
        return [self.tenant_key(tenant_id, section) for section in TENANT_CACHE_SECTIONS]

    @staticmethod
    def _generation_key(key: str) -> str:
        return f"{key}:gen"

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def _serialize(self, value: Any) -> str:
        """Serialize Python object to JSON string with Decimal precision."""
        def default_handler(obj: Any) -> Any:
            if isinstance(obj, (datetime, date)):
                return obj.isoformat()
            elif isinstance(obj, Decimal):
                return {"__decimal__": str(obj)}
            raise TypeError(f"Object of type {type(obj)} is not JSON serializable")
        return json.dumps(value, default=default_handler)

    def _deserialize(self, value: str) -> Any:
        """Deserialize JSON string to Python object, reconstructing Decimals."""
        def object_hook(dct: Dict[str, Any]) -> Any:
            if "__decimal__" in dct:
                return Decimal(dct["__decimal__"])
            return dct
        return json.loads(value, object_hook=object_hook)

    # ------------------------------------------------------------------
    # Raw operations (raise CacheUnavailableError)
    # ------------------------------------------------------------------

    def _require_client(self) -> redis.Redis:
        if not self._enabled or self.client is None:
            raise CacheUnavailableError("Cache disabled")
        return self.client

    def _read_entry(self, key: str):
        """Return (entry or None, current generation)."""
        client = self._require_client()
        try:
            raw, generation = client.mget([key, self._generation_key(key)])
        except RedisError as e:
            raise CacheUnavailableError(str(e)) from e
        generation = int(generation or 0)
        if raw is None:
            return None, generation
        try:
            entry = self._deserialize(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"[CACHE] Corrupt entry for {key}: {e}")
            return None, generation
        if not isinstance(entry, dict) or entry.get('g') != generation:
            return None, generation
        return entry, generation

    def _write_entry(self, key: str, value: Any, generation: int, ttl: Optional[int]) -> bool:
        try:
            client = self._require_client()
            payload = self._serialize({'g': generation, 'v': value})
            client.set(key, payload, ex=ttl or self._default_ttl)
            return True
        except CacheUnavailableError:
            return False
        except (RedisError, TypeError) as e:
            logger.warning(f"[CACHE] Set error for {key}: {e}")
            return False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def is_pending(self, key: str) -> bool:
        """True while a failed invalidation of this key has not been repaired."""
        with self._pending_lock:
            return key in self._pending

    def _settle(self, key: str) -> bool:
        """Retry a pending invalidation; True once the key is safe to read again."""
        if not self.is_pending(key):
            return True
        return self.invalidate(key) == 1

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache (None on miss, outage or pending invalidation)."""
        if not self._settle(key):
            return None
        try:
            entry, _ = self._read_entry(key)
        except CacheUnavailableError as e:
            logger.warning(f"[CACHE] Get error for {key}: {e}")
            return None
        return entry['v'] if entry else None

    def get_or_load(self, key: str, loader: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """
        Cache-aside read: return the cached value, or load, store and return it.

        A cache outage degrades to the loader; in that case a
        StoreUnavailableError from the loader is retried once. None results
        are returned but never cached.
        """
        degraded = False
        generation = 0
        entry = None
        if not self._settle(key):
            degraded = True
            cache_requests_total.labels(result='degraded').inc()
            logger.warning(f"[CACHE] Bypassing {key}: invalidation still pending")
        else:
            try:
                entry, generation = self._read_entry(key)
            except CacheUnavailableError as e:
                degraded = True
                cache_requests_total.labels(result='degraded').inc()
                logger.warning(f"[CACHE] Degraded read for {key}: {e}")

        if entry is not None:
            cache_requests_total.labels(result='hit').inc()
            return entry['v']

        if not degraded:
            cache_requests_total.labels(result='miss').inc()

        try:
            value = loader()
        except StoreUnavailableError:
            if not degraded:
                raise
            logger.warning(f"[CACHE] Store unavailable after cache failure for {key}, retrying once")
            value = loader()

        if value is not None and not degraded:
            self._write_entry(key, value, generation, ttl)
        return value

    def prime(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store a freshly committed value under the key's current generation."""
        if not self._settle(key):
            return False
        try:
            _, generation = self._read_entry(key)
        except CacheUnavailableError as e:
            logger.warning(f"[CACHE] Prime skipped for {key}: {e}")
            return False
        return self._write_entry(key, value, generation, ttl)

    def invalidate(self, *keys: str) -> int:
        """
        Drop keys and advance their generations.

        The pipeline is retried once. Failures are logged, never raised; the
        keys are then marked pending so reads skip them. Returns the number of
        keys invalidated.
        """
        if not keys:
            return 0
        try:
            client = self._require_client()
        except CacheUnavailableError:
            return 0

        for attempt in (1, 2):
            try:
                pipeline = client.pipeline()
                for key in keys:
                    pipeline.delete(key)
                    pipeline.incr(self._generation_key(key))
                pipeline.execute()
            except RedisError as e:
                logger.error(f"[CACHE] Invalidate error (attempt {attempt}) for {', '.join(keys)}: {e}")
                continue
            with self._pending_lock:
                self._pending.difference_update(keys)
            logger.info(f"[CACHE] INVALIDATE: {', '.join(keys)}")
            return len(keys)

        with self._pending_lock:
            self._pending.update(keys)
        return 0

    def invalidate_tenant(self, tenant_id: str) -> int:
        """Invalidate every cached section for a tenant."""
        return self.invalidate(*self.tenant_keys(tenant_id))


_cache_service: Optional[CacheService] = None


def init_cache(app: Flask, client: Optional[redis.Redis] = None) -> CacheService:
    """Initialize cache service singleton."""
    global _cache_service
    _cache_service = CacheService(client=client)
    _cache_service.init_app(app)
    if not hasattr(app, 'extensions'):
        app.extensions = {}
    app.extensions['cache'] = _cache_service
    return _cache_service


def get_cache() -> CacheService:
    """Get cache service instance."""
    if _cache_service is None:
        raise RuntimeError("Cache not initialized.")
    return _cache_service
