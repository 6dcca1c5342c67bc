"""
Schema Cache

Key/value store schema providers use to skip expensive scans. The cache is
an OPTIMIZATION, not a source of truth: a provider must behave identically
with the cache disabled.

Backends:
    SchemaCache        in-process dict (default)
    RedisSchemaCache   JSON values in Redis, shared across processes

Both expose the same surface: has / get / put / forget / flush /
enable / disable / is_enabled / all / size.
"""

import json
import logging
from typing import Any, Dict, Optional

# Redis is optional - only needed for RedisSchemaCache
try:
    import redis
    REDIS_AVAILABLE = True
except ImportError:
    REDIS_AVAILABLE = False
    redis = None

from ..errors import SchemaCacheError

logger = logging.getLogger(__name__)


class SchemaCache:
    """In-memory schema cache."""

    def __init__(self, enabled: bool = True):
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._enabled = enabled

    def put(self, key: str, value: Dict[str, Any]) -> None:
        if not self._enabled:
            return
        self._cache[key] = value

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        if not self._enabled:
            return None
        return self._cache.get(key)

    def has(self, key: str) -> bool:
        if not self._enabled:
            return False
        return key in self._cache

    def forget(self, key: str) -> None:
        self._cache.pop(key, None)

    def flush(self) -> None:
        self._cache.clear()

    def disable(self) -> None:
        self._enabled = False

    def enable(self) -> None:
        self._enabled = True

    def is_enabled(self) -> bool:
        return self._enabled

    def all(self) -> Dict[str, Dict[str, Any]]:
        return dict(self._cache)

    def size(self) -> int:
        return len(self._cache)


class RedisSchemaCache(SchemaCache):
    """
    Redis-backed schema cache.

    Values are stored as JSON under "<prefix><key>". Read and write errors
    are logged and treated as cache misses so schema resolution keeps
    working when Redis is down.

    Example:
        cache = RedisSchemaCache(url="redis://localhost:6379/0")
        registry = SchemaRegistry(cache=cache)
    """

    def __init__(
        self,
        url: Optional[str] = None,
        client: Any = None,
        prefix: str = "slice:schema:",
        ttl_seconds: Optional[int] = None,
        enabled: bool = True,
    ):
        super().__init__(enabled=enabled)
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds

        if client is not None:
            self._client = client
        elif url is not None:
            if not REDIS_AVAILABLE:
                raise SchemaCacheError(
                    "redis-py not installed. Run: pip install redis",
                    backend="redis",
                )
            self._client = redis.from_url(url, socket_connect_timeout=2, socket_timeout=5)
            logger.info(f"Schema cache using Redis: {url}")
        else:
            raise SchemaCacheError("RedisSchemaCache needs a url or a client", backend="redis")

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def put(self, key: str, value: Dict[str, Any]) -> None:
        if not self._enabled:
            return
        try:
            payload = json.dumps(value, default=str)
            if self.ttl_seconds:
                self._client.set(self._key(key), payload, ex=self.ttl_seconds)
            else:
                self._client.set(self._key(key), payload)
        except Exception as e:
            logger.warning(f"Schema cache set error: {e}")

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        if not self._enabled:
            return None
        try:
            cached = self._client.get(self._key(key))
        except Exception as e:
            logger.warning(f"Schema cache get error: {e}")
            return None
        if cached is None:
            return None
        if isinstance(cached, bytes):
            cached = cached.decode("utf-8")
        return json.loads(cached)

    def has(self, key: str) -> bool:
        if not self._enabled:
            return False
        try:
            return bool(self._client.exists(self._key(key)))
        except Exception as e:
            logger.warning(f"Schema cache exists error: {e}")
            return False

    def forget(self, key: str) -> None:
        self._client.delete(self._key(key))

    def _keys(self):
        return list(self._client.scan_iter(match=f"{self.prefix}*"))

    def flush(self) -> None:
        keys = self._keys()
        if keys:
            self._client.delete(*keys)

    def all(self) -> Dict[str, Dict[str, Any]]:
        result = {}
        for raw_key in self._keys():
            full_key = raw_key.decode("utf-8") if isinstance(raw_key, bytes) else raw_key
            key = full_key[len(self.prefix):]
            value = self.get(key)
            if value is not None:
                result[key] = value
        return result

    def size(self) -> int:
        return len(self._keys())
