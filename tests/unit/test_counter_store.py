"""Tests for the counter store backends."""

from __future__ import annotations

import threading
from unittest import mock

import pytest
import redis

from pushgate.config import Settings
from pushgate.core.counter_store import (
    CounterStore,
    CounterStoreUnavailable,
    InMemoryCounterStore,
    RedisCounterStore,
    create_counter_store,
)


class TestInMemoryCounterStore:
    def test_increment_batch(self, counter_store: InMemoryCounterStore):
        counter_store.increment_batch([("h", "a", 1), ("h", "a", 2), ("h", "b", -1)])
        assert counter_store.get_all("h") == {"a": "3", "b": "-1"}
        assert counter_store.get_field("h", "a") == "3"
        assert counter_store.get_field("h", "missing") is None
        assert counter_store.get_field("missing", "a") is None

    def test_expiry_set_only_on_new_key(self, counter_store: InMemoryCounterStore):
        counter_store.set_field("h", "a", "1", expire_new_seconds=3600)
        counter_store.set_field("h", "b", "2", expire_new_seconds=0)
        assert counter_store.get_all("h") == {"a": "1", "b": "2"}

    def test_expired_key_is_gone(self, counter_store: InMemoryCounterStore):
        counter_store.set_field("h", "a", "1", expire_new_seconds=0)
        assert counter_store.get_all("h") == {}

    def test_delete_field_and_keys(self, counter_store: InMemoryCounterStore):
        counter_store.set_field("h1", "a", "1")
        counter_store.set_field("h1", "b", "1")
        counter_store.set_field("h2", "a", "1")
        counter_store.delete_field("h1", "a")
        assert counter_store.get_all("h1") == {"b": "1"}
        counter_store.delete("h1", "h2", "h3")
        assert counter_store.get_all("h1") == {}
        assert counter_store.get_all("h2") == {}

    def test_concurrent_increments(self, counter_store: InMemoryCounterStore):
        def bump():
            for _ in range(200):
                counter_store.increment_batch([("h", "n", 1)])

        threads = [threading.Thread(target=bump) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert counter_store.get_field("h", "n") == "1600"

    def test_satisfies_protocol(self, counter_store: InMemoryCounterStore):
        assert isinstance(counter_store, CounterStore)


class TestRedisCounterStore:
    @pytest.fixture
    def client(self) -> mock.MagicMock:
        return mock.MagicMock(spec=redis.Redis)

    def test_increment_batch_is_one_transaction(self, client):
        pipe = client.pipeline.return_value
        RedisCounterStore(client).increment_batch([("h", "a", 1), ("h2", "b", -1)])
        client.pipeline.assert_called_once_with(transaction=True)
        assert pipe.hincrby.call_args_list == [mock.call("h", "a", 1), mock.call("h2", "b", -1)]
        pipe.execute.assert_called_once_with()

    def test_set_field_expires_new_key(self, client):
        client.exists.return_value = 0
        pipe = client.pipeline.return_value
        RedisCounterStore(client).set_field("h", "f", "v", expire_new_seconds=60)
        pipe.hset.assert_called_once_with("h", "f", "v")
        pipe.expire.assert_called_once_with("h", 60)

    def test_set_field_keeps_existing_expiry(self, client):
        client.exists.return_value = 1
        pipe = client.pipeline.return_value
        RedisCounterStore(client).set_field("h", "f", "v", expire_new_seconds=60)
        pipe.expire.assert_not_called()

    def test_reads(self, client):
        client.hgetall.return_value = {"v1:Active": "3"}
        client.hget.return_value = "3"
        store = RedisCounterStore(client)
        assert store.get_all("h") == {"v1:Active": "3"}
        assert store.get_field("h", "v1:Active") == "3"

    def test_delete(self, client):
        store = RedisCounterStore(client)
        store.delete("a", "b")
        client.delete.assert_called_once_with("a", "b")
        store.delete()
        client.delete.assert_called_once()

    def test_redis_errors_translated(self, client):
        client.hgetall.side_effect = redis.ConnectionError("down")
        with pytest.raises(CounterStoreUnavailable):
            RedisCounterStore(client).get_all("h")

    def test_pipeline_errors_translated(self, client):
        client.pipeline.return_value.execute.side_effect = redis.TimeoutError("slow")
        with pytest.raises(CounterStoreUnavailable):
            RedisCounterStore(client).increment_batch([("h", "a", 1)])


class TestCreateCounterStore:
    def test_disabled_without_url(self):
        assert create_counter_store(Settings(redis_url="")) is None

    def test_redis_from_url(self):
        store = create_counter_store(Settings(redis_url="redis://localhost:6379/0"))
        assert isinstance(store, RedisCounterStore)
        store.close()
