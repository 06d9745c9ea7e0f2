"""
Namespaced key/value cache in front of the Store.

get() returns a ``(value, found)`` pair so a cached falsy value is not
mistaken for a miss. Repositories never cache an absent result.

Listing caches (search results, counts, a user's audience list) have an
unbounded key set. They are keyed under a namespace version token that the
cache itself stores; bumping the version orphans every key built on the old
token, so a listing is never stale for longer than the next write.
"""

import json
import logging
from typing import Any

from redis import Redis

from convene.config import Config, config as default_config
from convene.errors import ConfigurationError

logger = logging.getLogger(__name__)

VERSION_KEY = "__version__"


class MemoryCache:
    """Process-local cache, scoped to the lifetime of the object."""

    def __init__(self):
        self._data: dict[tuple[str, str], Any] = {}

    def get(self, namespace: str, key: str) -> tuple[Any, bool]:
        k = (namespace, str(key))
        if k in self._data:
            return self._data[k], True
        return None, False

    def set(self, namespace: str, key: str, value: Any) -> None:
        self._data[(namespace, str(key))] = value

    def delete(self, namespace: str, key: str) -> None:
        self._data.pop((namespace, str(key)), None)

    def clear(self) -> None:
        self._data.clear()


class NullCache:
    """Cache that never holds anything."""

    def get(self, namespace: str, key: str) -> tuple[Any, bool]:
        return None, False

    def set(self, namespace: str, key: str, value: Any) -> None:
        pass

    def delete(self, namespace: str, key: str) -> None:
        pass


class RedisCache:
    """
    Shared cache on Redis.

    Values are stored as JSON; dates and datetimes come back as ISO strings.
    Connection errors degrade to a miss so the Store stays the source of truth.
    """

    def __init__(self, client: Redis, prefix: str = "convene", ttl: int | None = 3600):
        self.client = client
        self.prefix = prefix
        self.ttl = ttl

    def _key(self, namespace: str, key: str) -> str:
        return f"{self.prefix}:{namespace}:{key}"

    def get(self, namespace: str, key: str) -> tuple[Any, bool]:
        try:
            raw = self.client.get(self._key(namespace, key))
        except Exception:
            logger.warning("Redis get failed for %s:%s", namespace, key, exc_info=True)
            return None, False
        if raw is None:
            return None, False
        return json.loads(raw), True

    def set(self, namespace: str, key: str, value: Any) -> None:
        try:
            # Version tokens must outlive the keys built on them.
            ttl = None if key == VERSION_KEY else self.ttl
            self.client.set(self._key(namespace, key), json.dumps(value, default=str), ex=ttl)
        except Exception:
            logger.warning("Redis set failed for %s:%s", namespace, key, exc_info=True)

    def delete(self, namespace: str, key: str) -> None:
        try:
            self.client.delete(self._key(namespace, key))
        except Exception:
            logger.warning("Redis delete failed for %s:%s", namespace, key, exc_info=True)


def build_cache(cfg: Config | None = None):
    """Build the cache backend named by the configuration."""
    cfg = cfg or default_config
    if cfg.cache_backend == "memory":
        return MemoryCache()
    if cfg.cache_backend == "none":
        return NullCache()
    if cfg.cache_backend == "redis":
        return RedisCache(Redis.from_url(cfg.redis_url), prefix=cfg.cache_prefix)
    raise ConfigurationError(f"Unknown cache backend: {cfg.cache_backend}")


# =============================================================================
# Namespace versions
# =============================================================================


def namespace_version(cache, namespace: str) -> int:
    value, found = cache.get(namespace, VERSION_KEY)
    return int(value) if found else 0


def bump_version(cache, namespace: str) -> int:
    version = namespace_version(cache, namespace) + 1
    cache.set(namespace, VERSION_KEY, version)
    return version


def versioned_key(cache, namespace: str, key: str) -> str:
    return f"v{namespace_version(cache, namespace)}:{key}"
