"""
Unit tests for the shopkeeper session registry and its stores.
"""

import pytest
from redis.exceptions import RedisError, ConnectionError

from vapestock.exceptions import DuplicateSessionError, UnauthorizedError
from vapestock.services.session_service import SessionRegistry, Seller, ensure_same_shop
from vapestock.services.session_store import (
    ActiveSession, InMemorySessionStore, RedisSessionStore, SessionStore, build_session_store
)


class TestSessionRegistry:
    """Tests for open/update/get/end on the in-memory store."""

    def test_open_session_starts_empty(self, registry):
        session_id = registry.open_session('sk-1', 'alice')

        session = registry.get_session(session_id)
        assert session.shopkeeper_id == 'sk-1'
        assert session.shopkeeper_username == 'alice'
        assert session.sales_count == 0
        assert session.total_amount == 0
        assert session.end_time is None

    def test_session_ids_are_unique(self, registry):
        first = registry.open_session('sk-1', 'alice')
        second = registry.open_session('sk-2', 'bob')
        assert first != second

    def test_duplicate_session_for_shopkeeper(self, registry):
        registry.open_session('sk-1', 'alice')
        with pytest.raises(DuplicateSessionError):
            registry.open_session('sk-1', 'alice')

    def test_update_session_accumulates(self, registry):
        session_id = registry.open_session('sk-1', 'alice')
        registry.update_session(session_id, 300)
        registry.update_session(session_id, 200)

        session = registry.get_session(session_id)
        assert session.sales_count == 2
        assert session.total_amount == 500

    def test_update_unknown_session_is_ignored(self, registry):
        assert registry.update_session('missing', 100) is None

    def test_snapshots_are_copies(self, registry):
        session_id = registry.open_session('sk-1', 'alice')
        snapshot = registry.get_session(session_id)
        snapshot.total_amount = 999
        assert registry.get_session(session_id).total_amount == 0

    def test_end_session_returns_final_snapshot(self, registry):
        session_id = registry.open_session('sk-1', 'alice')
        registry.update_session(session_id, 150)

        ended = registry.end_session(session_id)

        assert ended.total_amount == 150
        assert ended.end_time is not None
        assert registry.get_session(session_id) is None
        assert registry.end_session(session_id) is None

    def test_shopkeeper_can_reopen_after_end(self, registry):
        first = registry.open_session('sk-1', 'alice')
        registry.end_session(first)
        second = registry.open_session('sk-1', 'alice')
        assert registry.find_by_shopkeeper('sk-1').session_id == second

    def test_restore_session(self, registry):
        session_id = registry.open_session('sk-1', 'alice')
        registry.update_session(session_id, 40)
        snapshot = registry.end_session(session_id)

        assert registry.restore_session(snapshot) is True
        restored = registry.get_session(session_id)
        assert restored.total_amount == 40
        assert restored.end_time is None

    def test_list_active_sessions(self, registry):
        registry.open_session('sk-1', 'alice')
        registry.open_session('sk-2', 'bob')
        names = [s.shopkeeper_username for s in registry.list_active_sessions()]
        assert sorted(names) == ['alice', 'bob']

    def test_seller_from_session(self, registry):
        session_id = registry.open_session('sk-1', 'alice')
        seller = Seller.from_session(registry.get_session(session_id))
        assert seller == Seller(session_id, 'sk-1', 'alice')

    def test_session_is_bound_to_its_shop(self, registry):
        session_id = registry.open_session('sk-1', 'alice', shop='downtown')
        active = registry.get_session(session_id)

        assert active.shop == 'downtown'
        assert active.to_dict()['shop'] == 'downtown'
        assert Seller.from_session(active).shop == 'downtown'

    def test_ensure_same_shop(self):
        ensure_same_shop('downtown', 'downtown')
        ensure_same_shop(None, 'downtown')
        with pytest.raises(UnauthorizedError) as exc:
            ensure_same_shop('downtown', 'uptown')
        assert exc.value.status_code == 403

    def test_update_survives_store_errors(self, mocker):
        store = mocker.Mock(spec=SessionStore)
        store.increment.side_effect = RedisError('down')
        registry = SessionRegistry(store)

        assert registry.update_session('abc', 100) is None
        store.increment.assert_called_once_with('abc', 100)


class TestRedisSessionStore:
    """Tests for the Redis-backed store with a mocked client."""

    def test_create_claims_shopkeeper_and_writes_hash(self, mocker):
        client = mocker.MagicMock()
        client.set.return_value = True
        pipe = client.pipeline.return_value
        store = RedisSessionStore(client, prefix='t', ttl_seconds=60)

        store.create(ActiveSession('s1', 'sk-1', 'alice'))

        client.set.assert_called_once_with('t:shopkeeper:sk-1', 's1', nx=True, ex=60)
        pipe.hset.assert_called_once()
        assert pipe.hset.call_args.args[0] == 't:session:s1'
        pipe.expire.assert_called_once_with('t:session:s1', 60)
        pipe.sadd.assert_called_once_with('t:sessions', 's1')
        pipe.execute.assert_called_once()

    def test_create_rejects_open_session(self, mocker):
        client = mocker.MagicMock()
        client.set.return_value = None
        client.get.return_value = 'existing'
        client.exists.return_value = 1
        store = RedisSessionStore(client, prefix='t')

        with pytest.raises(DuplicateSessionError):
            store.create(ActiveSession('s2', 'sk-1', 'alice'))

    def test_create_takes_over_stale_pointer(self, mocker):
        client = mocker.MagicMock()
        client.set.side_effect = [None, True]
        client.get.return_value = 'expired'
        client.exists.return_value = 0
        store = RedisSessionStore(client, prefix='t')

        store.create(ActiveSession('s2', 'sk-1', 'alice'))

        assert client.set.call_count == 2
        assert client.set.call_args.args == ('t:shopkeeper:sk-1', 's2')

    def test_increment_uses_hincrby(self, mocker):
        client = mocker.MagicMock()
        client.exists.return_value = 1
        pipe = client.pipeline.return_value
        pipe.execute.return_value = [300, 1, {
            'session_id': 's1', 'shopkeeper_id': 'sk-1', 'shopkeeper_username': 'alice',
            'start_time': '2024-01-01T10:00:00+00:00', 'sales_count': '1', 'total_amount': '300',
        }]
        store = RedisSessionStore(client, prefix='t')

        session = store.increment('s1', 300)

        pipe.hincrby.assert_any_call('t:session:s1', 'total_amount', 300)
        pipe.hincrby.assert_any_call('t:session:s1', 'sales_count', 1)
        assert session.total_amount == 300
        assert session.sales_count == 1

    def test_shop_round_trips_through_hash(self, mocker):
        client = mocker.MagicMock()
        client.set.return_value = True
        pipe = client.pipeline.return_value
        store = RedisSessionStore(client, prefix='t')

        store.create(ActiveSession('s1', 'sk-1', 'alice', shop='downtown'))
        written = pipe.hset.call_args.kwargs['mapping']
        assert written['shop'] == 'downtown'

        client.hgetall.return_value = written
        assert store.get('s1').shop == 'downtown'

    def test_hash_without_shop_is_unbound(self, mocker):
        client = mocker.MagicMock()
        client.hgetall.return_value = {
            'session_id': 's1', 'shopkeeper_id': 'sk-1', 'shopkeeper_username': 'alice',
            'start_time': '2024-01-01T10:00:00+00:00', 'sales_count': '0', 'total_amount': '0',
        }
        store = RedisSessionStore(client, prefix='t')

        assert store.get('s1').shop is None

    def test_increment_unknown_session(self, mocker):
        client = mocker.MagicMock()
        client.exists.return_value = 0
        store = RedisSessionStore(client, prefix='t')

        assert store.increment('nope', 10) is None
        client.pipeline.assert_not_called()


class TestBuildSessionStore:
    """Tests for store selection from config."""

    def test_memory_backend(self):
        assert isinstance(build_session_store({'SESSION_STORE_BACKEND': 'memory'}), InMemorySessionStore)

    def test_redis_unreachable_falls_back_to_memory(self, mocker):
        fake = mocker.MagicMock()
        fake.client.ping.side_effect = ConnectionError('refused')
        mocker.patch.object(RedisSessionStore, 'from_url', return_value=fake)

        store = build_session_store({'SESSION_STORE_BACKEND': 'redis', 'REDIS_URL': 'redis://nowhere:6379/0'})

        assert isinstance(store, InMemorySessionStore)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_session_store({'SESSION_STORE_BACKEND': 'mongo'})
