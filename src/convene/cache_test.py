"""
Tests for the cache backends and namespace versions.

Run with: CONVENE_ENV=test pytest src/convene/cache_test.py -v
"""

import json
from unittest.mock import MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from convene.cache import (
    VERSION_KEY,
    MemoryCache,
    NullCache,
    RedisCache,
    build_cache,
    bump_version,
    namespace_version,
    versioned_key,
)
from convene.config import Config
from convene.errors import ConfigurationError


class TestMemoryCache:
    """Tests for MemoryCache"""

    def test_miss(self):
        assert MemoryCache().get("audiences", "id_1") == (None, False)

    @pytest.mark.parametrize("value", [{"id": 1}, [], 0, False, ""])
    def test_hit_distinguishes_falsy_values(self, value):
        cache = MemoryCache()
        cache.set("audiences", "id_1", value)

        assert cache.get("audiences", "id_1") == (value, True)

    def test_namespaces_are_separate(self):
        cache = MemoryCache()
        cache.set("audiences", "id_1", "a")

        assert cache.get("custom_fields", "id_1") == (None, False)

    def test_delete(self):
        cache = MemoryCache()
        cache.set("audiences", "id_1", "a")
        cache.delete("audiences", "id_1")
        cache.delete("audiences", "never_set")

        assert cache.get("audiences", "id_1") == (None, False)


class TestNullCache:
    """Tests for NullCache"""

    def test_never_finds(self):
        cache = NullCache()
        cache.set("audiences", "id_1", {"id": 1})

        assert cache.get("audiences", "id_1") == (None, False)


class TestRedisCache:
    """Tests for RedisCache with a mocked client"""

    def test_get_decodes_json(self):
        client = MagicMock()
        client.get.return_value = json.dumps({"id": 1}).encode()

        value, found = RedisCache(client, prefix="t").get("audiences", "id_1")

        assert (value, found) == ({"id": 1}, True)
        client.get.assert_called_once_with("t:audiences:id_1")

    def test_get_miss(self):
        client = MagicMock()
        client.get.return_value = None

        assert RedisCache(client).get("audiences", "id_1") == (None, False)

    def test_set_uses_ttl(self):
        client = MagicMock()

        RedisCache(client, prefix="t", ttl=60).set("audiences", "id_1", {"id": 1})

        client.set.assert_called_once_with("t:audiences:id_1", '{"id": 1}', ex=60)

    def test_version_keys_do_not_expire(self):
        client = MagicMock()

        RedisCache(client, prefix="t", ttl=60).set("audiences", VERSION_KEY, 3)

        assert client.set.call_args.kwargs["ex"] is None

    def test_connection_errors_degrade_to_miss(self, caplog):
        client = MagicMock()
        client.get.side_effect = RedisConnectionError("refused")
        client.set.side_effect = RedisConnectionError("refused")
        cache = RedisCache(client)

        cache.set("audiences", "id_1", {"id": 1})

        assert cache.get("audiences", "id_1") == (None, False)
        assert "Redis get failed" in caplog.text


class TestBuildCache:
    """Tests for build_cache()"""

    def make_config(self, backend):
        return Config(
            environment="test",
            database_url="postgresql://x",
            redis_url="redis://localhost:6379/15",
            cache_backend=backend,
        )

    def test_memory(self):
        assert isinstance(build_cache(self.make_config("memory")), MemoryCache)

    def test_none(self):
        assert isinstance(build_cache(self.make_config("none")), NullCache)

    def test_redis(self):
        with patch("convene.cache.Redis.from_url") as from_url:
            cache = build_cache(self.make_config("redis"))

        assert isinstance(cache, RedisCache)
        from_url.assert_called_once_with("redis://localhost:6379/15")

    def test_unknown_backend_raises(self):
        with pytest.raises(ConfigurationError, match="memcached"):
            build_cache(self.make_config("memcached"))


class TestNamespaceVersions:
    """Tests for namespace_version() / bump_version() / versioned_key()"""

    def test_starts_at_zero(self):
        assert namespace_version(MemoryCache(), "audiences") == 0

    def test_bump_orphans_old_keys(self):
        cache = MemoryCache()
        old_key = versioned_key(cache, "audiences", "search_eng_20")
        cache.set("audiences", old_key, ["stale"])

        bump_version(cache, "audiences")
        new_key = versioned_key(cache, "audiences", "search_eng_20")

        assert new_key != old_key
        assert cache.get("audiences", new_key) == (None, False)

    def test_namespaces_version_independently(self):
        cache = MemoryCache()
        bump_version(cache, "audiences")

        assert namespace_version(cache, "audiences") == 1
        assert namespace_version(cache, "user_audiences") == 0
