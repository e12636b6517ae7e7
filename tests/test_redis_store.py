"""Tests for the Redis store backend."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from leasecache.cache.codec import MISSING
from leasecache.cache.errors import StoreConnectionError
from leasecache.cache.handle import CacheHandle
from leasecache.cache.redis import ADMIT_SCRIPT, PROBE_EXTEND_SCRIPT, RedisStore

from conftest import EventRecorder


def make_client(admit_reply=b"@new", probe_reply=0) -> MagicMock:
    """Build a mocked redis.asyncio client with registered scripts."""
    client = AsyncMock()
    client.ping = AsyncMock(return_value=True)
    admit_script = AsyncMock(return_value=admit_reply)
    probe_script = AsyncMock(return_value=probe_reply)
    client.register_script = MagicMock(side_effect=[admit_script, probe_script])
    client.admit_script = admit_script
    client.probe_script = probe_script
    return client


class TestScripts:
    """Tests for the Lua script sources."""

    def test_admit_script(self) -> None:
        """Test admission sets the lease marker only when the key is absent."""
        assert "redis.call('GET', KEYS[1])" in ADMIT_SCRIPT
        assert "'@promise', 'EX', ARGV[1]" in ADMIT_SCRIPT
        assert "return '@new'" in ADMIT_SCRIPT

    def test_probe_script(self) -> None:
        """Test probing re-arms only a lease with no TTL left."""
        assert "redis.call('TTL', KEYS[1])" in PROBE_EXTEND_SCRIPT
        assert "if v <= 0 then" in PROBE_EXTEND_SCRIPT
        assert "redis.call('EXPIRE', KEYS[1], ARGV[1])" in PROBE_EXTEND_SCRIPT


class TestRedisStore:
    """Tests for RedisStore."""

    @pytest.fixture
    def store(self) -> RedisStore:
        """Create a test Redis store instance."""
        return RedisStore(url="redis://localhost:6379/13", reconnect_delay=10)

    def test_requires_configuration(self) -> None:
        """Test a store needs a URL or options."""
        with pytest.raises(ValueError, match="configuration missing"):
            RedisStore()

    def test_name(self, store: RedisStore) -> None:
        """Test the name is the URL, or the options as JSON."""
        assert store.name == "redis://localhost:6379/13"
        assert RedisStore(options={"port": 6380, "host": "h"}).name == '{"host": "h", "port": 6380}'

    def test_initial_connection_status(self, store: RedisStore) -> None:
        """Test initial connection status is False."""
        assert store.is_connected is False

    @pytest.mark.asyncio
    async def test_connect_registers_scripts(self, store: RedisStore) -> None:
        """Test successful connection (mocked)."""
        client = make_client()

        with patch("redis.asyncio.from_url", return_value=client) as from_url:
            result = await store.connect()

        assert result is True
        assert store.is_connected is True
        assert from_url.call_args.kwargs["socket_connect_timeout"] == 1.0
        assert client.register_script.call_count == 2

    @pytest.mark.asyncio
    async def test_connect_with_options(self) -> None:
        """Test structured options are passed to redis.asyncio.Redis."""
        client = make_client()
        store = RedisStore(options={"host": "cache", "db": 3})

        with patch("redis.asyncio.Redis", return_value=client) as redis_cls:
            assert await store.connect() is True

        kwargs = redis_cls.call_args.kwargs
        assert kwargs["host"] == "cache"
        assert kwargs["db"] == 3
        assert kwargs["decode_responses"] is False

    @pytest.mark.asyncio
    async def test_connect_failure(self) -> None:
        """Test connection failure handling and reconnect delay."""
        recorder = EventRecorder()
        store = RedisStore(url="redis://localhost:6379/13", log=recorder)

        with patch("redis.asyncio.from_url", side_effect=Exception("Connection failed")):
            assert await store.connect() is False

        assert store.is_connected is False
        assert recorder.names == ["store-retry"]
        with pytest.raises(StoreConnectionError, match="unavailable"):
            await store.get("k")

    @pytest.mark.asyncio
    async def test_lazy_connect(self, store: RedisStore) -> None:
        """Test the first command connects on demand."""
        client = make_client()
        client.get = AsyncMock(return_value=b'"v"')

        with patch("redis.asyncio.from_url", return_value=client):
            assert await store.get("k") == b'"v"'

        client.get.assert_called_once_with("k")

    @pytest.mark.asyncio
    async def test_commands(self, store: RedisStore) -> None:
        """Test the plain commands (mocked)."""
        client = make_client()
        client.type = AsyncMock(return_value=b"string")
        client.keys = AsyncMock(return_value=[b"ns:a", b"ns:b"])
        client.ttl = AsyncMock(return_value=42)
        client.delete = AsyncMock(return_value=2)

        with patch("redis.asyncio.from_url", return_value=client):
            await store.connect()
            await store.setex("k", 30, '"v"')
            assert await store.type("k") == "string"
            assert await store.keys(r"ns\:*") == ["ns:a", "ns:b"]
            assert await store.ttl("k") == 42
            assert await store.delete("ns:a", "ns:b") == 2
            assert await store.delete() == 0

        client.setex.assert_called_once_with("k", 30, '"v"')
        client.delete.assert_called_once_with("ns:a", "ns:b")

    @pytest.mark.asyncio
    async def test_scripts(self, store: RedisStore) -> None:
        """Test admission and probing run as registered scripts."""
        client = make_client(admit_reply=b"@promise", probe_reply=17)

        with patch("redis.asyncio.from_url", return_value=client):
            await store.connect()
            assert await store.admit("ns:k", 30) == b"@promise"
            assert await store.probe_extend("ns:k", 30) == 17

        client.admit_script.assert_called_once_with(keys=["ns:k"], args=[30])
        client.probe_script.assert_called_once_with(keys=["ns:k"], args=[30])

    @pytest.mark.asyncio
    async def test_connection_error_marks_disconnected(self, store: RedisStore) -> None:
        """Test a dropped connection raises and schedules a reconnect."""
        client = make_client()
        client.get = AsyncMock(side_effect=RedisConnectionError("reset"))

        with patch("redis.asyncio.from_url", return_value=client):
            await store.connect()
            with pytest.raises(StoreConnectionError):
                await store.get("k")

        assert store.is_connected is False

    @pytest.mark.asyncio
    async def test_response_error_keeps_connection(self, store: RedisStore) -> None:
        """Test a command error does not drop the connection."""
        client = make_client()
        client.setex = AsyncMock(side_effect=ResponseError("invalid expire time"))

        with patch("redis.asyncio.from_url", return_value=client):
            await store.connect()
            with pytest.raises(StoreConnectionError):
                await store.setex("k", 0, "1")

        assert store.is_connected is True

    @pytest.mark.asyncio
    async def test_close(self, store: RedisStore) -> None:
        """Test close() releases the client."""
        client = make_client()

        with patch("redis.asyncio.from_url", return_value=client):
            await store.connect()
            await store.close()

        client.aclose.assert_awaited_once()
        assert store.is_connected is False

    @pytest.mark.asyncio
    async def test_health_check_connected(self, store: RedisStore) -> None:
        """Test health check when connected (mocked)."""
        client = make_client()
        client.info = AsyncMock(return_value={"redis_version": "7.2.0", "uptime_in_seconds": 5})
        client.dbsize = AsyncMock(return_value=100)

        with patch("redis.asyncio.from_url", return_value=client):
            health = await store.health_check()

        assert health["backend"] == "redis"
        assert health["connected"] is True
        assert health["redis_version"] == "7.2.0"
        assert health["total_keys"] == 100

    @pytest.mark.asyncio
    async def test_health_check_disconnected(self, store: RedisStore) -> None:
        """Test health check when Redis is unreachable."""
        with patch("redis.asyncio.from_url", side_effect=Exception("refused")):
            health = await store.health_check()

        assert health["connected"] is False


class TestHandleOverRedis:
    """Tests for CacheHandle running against a mocked Redis."""

    @pytest.mark.asyncio
    async def test_get_hit(self) -> None:
        """Test a JSON admission reply is a hit."""
        client = make_client(admit_reply=b'{"a": 1}')
        store = RedisStore(url="redis://localhost:6379/13")
        cache = CacheHandle(store, namespace="memo", async_timeout=30)

        with patch("redis.asyncio.from_url", return_value=client):
            assert await cache.get("k") == {"a": 1}

        client.admit_script.assert_called_once_with(keys=["memo:k"], args=[30])

    @pytest.mark.asyncio
    async def test_get_null_and_new(self) -> None:
        """Test null and new-lease admission replies."""
        store = RedisStore(url="redis://localhost:6379/13")
        cache = CacheHandle(store, namespace="memo")

        with patch("redis.asyncio.from_url", return_value=make_client(admit_reply=b"@null")):
            assert await cache.get("k") is None
        await store.close()
        with patch("redis.asyncio.from_url", return_value=make_client(admit_reply=b"@new")):
            assert await cache.get("k") is MISSING

    @pytest.mark.asyncio
    async def test_get_store_failure_is_a_miss(self) -> None:
        """Test a dropped connection during admission degrades to a miss."""
        recorder = EventRecorder()
        client = make_client()
        client.admit_script.side_effect = RedisConnectionError("reset")
        store = RedisStore(url="redis://localhost:6379/13", log=recorder)
        cache = CacheHandle(store, namespace="memo", log=recorder)

        with patch("redis.asyncio.from_url", return_value=client):
            assert await cache.get("k") is MISSING

        assert recorder.names == ["store-retry", "store-error"]

    @pytest.mark.asyncio
    async def test_set_uses_setex(self) -> None:
        """Test set() stores the encoded value with a TTL in seconds."""
        client = make_client()
        store = RedisStore(url="redis://localhost:6379/13")
        cache = CacheHandle(store, namespace="memo", default_ttl=120)

        with patch("redis.asyncio.from_url", return_value=client):
            await cache.set("k", {"a": 1}, 60_000)
            await cache.set("n", None)

        client.setex.assert_any_call("memo:k", 60, '{"a": 1}')
        client.setex.assert_any_call("memo:n", 120, "@null")

    @pytest.mark.asyncio
    async def test_has_propagates(self) -> None:
        """Test has() raises when Redis is unreachable."""
        store = RedisStore(url="redis://localhost:6379/13")
        cache = CacheHandle(store)

        with patch("redis.asyncio.from_url", side_effect=Exception("refused")):
            with pytest.raises(StoreConnectionError):
                await cache.has("k")

    @pytest.mark.asyncio
    async def test_clear_escapes_namespace(self) -> None:
        """Test clear() builds an escaped pattern and deletes the matches."""
        client = make_client()
        client.keys = AsyncMock(return_value=[b"a.b*:1"])
        store = RedisStore(url="redis://localhost:6379/13")
        cache = CacheHandle(store, namespace="a.b*")

        with patch("redis.asyncio.from_url", return_value=client):
            await cache.clear()

        client.keys.assert_called_once_with(r"a\.b\*:*")
        client.delete.assert_called_once_with("a.b*:1")
