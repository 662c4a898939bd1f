"""
Redis Cache Service.
Cache-aside storage for remote lookups with graceful degradation: when Redis
is down every call behaves like a miss and the request goes to the source.
"""

import logging
import json
from typing import Any, Optional, Callable
from datetime import datetime, date
from decimal import Decimal

import redis
from redis.exceptions import RedisError
from flask import Flask

logger = logging.getLogger(__name__)

DECIMAL_TAG = '__decimal__'


def _encode(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return {DECIMAL_TAG: str(obj)}
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    raise TypeError(f"{type(obj).__name__} is not cacheable")


def _decode(obj: dict) -> Any:
    if DECIMAL_TAG in obj:
        return Decimal(obj[DECIMAL_TAG])
    return obj


def dumps(value: Any) -> str:
    """JSON with Decimals kept exact."""
    return json.dumps(value, default=_encode)


def loads(raw: str) -> Any:
    return json.loads(raw, object_hook=_decode)


class CacheService:
    """
    Redis-based caching service.

    Keys pattern: {prefix}:{scope}:{module}:{key}
    where scope names the remote system the value came from (erp, api).
    """

    def __init__(self, app: Optional[Flask] = None):
        self.client: Optional[redis.Redis] = None
        self._enabled: bool = False
        self._prefix: str = ""
        self._default_ttl: int = 60

        if app:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        """Read CACHE_* settings and connect to REDIS_URL."""
        self._prefix = app.config.get('CACHE_KEY_PREFIX', 'fieldsales')
        self._default_ttl = app.config.get('CACHE_DEFAULT_TTL', 60)
        self._enabled = bool(app.config.get('CACHE_ENABLED', True))

        if self._enabled:
            self._connect(app.config.get('REDIS_URL', 'redis://localhost:6379/0'))
        else:
            logger.info("[CACHE] Disabled by configuration")

    def _connect(self, redis_url: str) -> None:
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=3,
            socket_timeout=3,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        try:
            client.ping()
        except RedisError as e:
            logger.warning(f"[CACHE] Redis unreachable at {redis_url} ({e}); lookups go to the source")
            self._enabled = False
            return
        self.client = client
        logger.info(f"[CACHE] Using Redis at {redis_url}")

    def is_available(self) -> bool:
        if not (self._enabled and self.client):
            return False
        try:
            return bool(self.client.ping())
        except RedisError:
            return False

    def key(self, scope: str, module: str, key: str) -> str:
        return f"{self._prefix}:{scope}:{module}:{key}"

    def get(self, scope: str, module: str, key: str) -> Optional[Any]:
        """Stored value, or None on a miss or any Redis/decoding failure."""
        if not self.is_available():
            return None
        try:
            raw = self.client.get(self.key(scope, module, key))
            return None if raw is None else loads(raw)
        except (RedisError, ValueError) as e:
            logger.warning(f"[CACHE] Read of {scope}:{module}:{key} failed: {e}")
            return None

    def set(self, scope: str, module: str, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store ``value`` for ``ttl`` seconds. Non-positive TTLs are not stored."""
        if ttl is None:
            ttl = self._default_ttl
        if ttl <= 0 or not self.is_available():
            return False
        try:
            self.client.setex(self.key(scope, module, key), int(ttl), dumps(value))
        except (RedisError, TypeError) as e:
            logger.warning(f"[CACHE] Write of {scope}:{module}:{key} failed: {e}")
            return False
        return True

    def memoize(self, scope: str, module: str, key: str, loader_fn: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """Return the cached value or call ``loader_fn`` and cache its result."""
        cached = self.get(scope, module, key)
        if cached is not None:
            logger.debug(f"[CACHE] HIT {scope}:{module}:{key}")
            return cached
        value = loader_fn()
        self.set(scope, module, key, value, ttl)
        return value


def init_cache(app: Flask) -> CacheService:
    """Attach a CacheService to ``app.extensions['cache']``."""
    cache = CacheService(app)
    app.extensions['cache'] = cache
    return cache
