"""
Backing stores for active shopkeeper sessions.

The session registry only talks to the `SessionStore` interface:
- InMemorySessionStore: process-wide dict, lost on restart (single process deployments)
- RedisSessionStore: shared across workers and restarts, atomic counters via HINCRBY
"""
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

import redis
from redis.exceptions import RedisError

from vapestock.exceptions import DuplicateSessionError

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ActiveSession:
    """Snapshot of a shopkeeper's working session."""
    session_id: str
    shopkeeper_id: str
    shopkeeper_username: str
    start_time: datetime = field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    sales_count: int = 0
    total_amount: int = 0
    shop: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def to_dict(self) -> dict:
        return {
            'sessionId': self.session_id,
            'shopkeeperId': self.shopkeeper_id,
            'shopkeeperUsername': self.shopkeeper_username,
            'startTime': self.start_time.isoformat() if self.start_time else None,
            'endTime': self.end_time.isoformat() if self.end_time else None,
            'salesCount': self.sales_count,
            'totalAmount': self.total_amount,
            'shop': self.shop,
        }


class SessionStore(ABC):
    """Storage contract for active sessions. Implementations must be safe for concurrent callers."""

    @abstractmethod
    def create(self, session: ActiveSession) -> None:
        """Store a new session. Raises DuplicateSessionError if the shopkeeper already has one."""

    @abstractmethod
    def increment(self, session_id: str, amount_delta: int) -> Optional[ActiveSession]:
        """Add amount_delta to total_amount and 1 to sales_count. None if unknown."""

    @abstractmethod
    def get(self, session_id: str) -> Optional[ActiveSession]:
        """Read-only snapshot, None if unknown."""

    @abstractmethod
    def pop(self, session_id: str) -> Optional[ActiveSession]:
        """Remove and return the session, None if unknown."""

    @abstractmethod
    def find_by_shopkeeper(self, shopkeeper_id: str) -> Optional[ActiveSession]:
        """Open session of a shopkeeper, if any."""

    @abstractmethod
    def all(self) -> List[ActiveSession]:
        """All open sessions, oldest first."""


class InMemorySessionStore(SessionStore):
    """Process-wide in-memory store guarded by a lock."""

    def __init__(self):
        self._sessions: Dict[str, ActiveSession] = {}
        self._by_shopkeeper: Dict[str, str] = {}
        self._lock = threading.Lock()

    def create(self, session: ActiveSession) -> None:
        with self._lock:
            existing_id = self._by_shopkeeper.get(session.shopkeeper_id)
            if existing_id and existing_id in self._sessions:
                raise DuplicateSessionError(session.shopkeeper_username, existing_id)
            self._sessions[session.session_id] = replace(session)
            self._by_shopkeeper[session.shopkeeper_id] = session.session_id

    def increment(self, session_id: str, amount_delta: int) -> Optional[ActiveSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            session.total_amount += amount_delta
            session.sales_count += 1
            return replace(session)

    def get(self, session_id: str) -> Optional[ActiveSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            return replace(session) if session else None

    def pop(self, session_id: str) -> Optional[ActiveSession]:
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                return None
            if self._by_shopkeeper.get(session.shopkeeper_id) == session_id:
                del self._by_shopkeeper[session.shopkeeper_id]
            return session

    def find_by_shopkeeper(self, shopkeeper_id: str) -> Optional[ActiveSession]:
        with self._lock:
            session_id = self._by_shopkeeper.get(shopkeeper_id)
            session = self._sessions.get(session_id) if session_id else None
            return replace(session) if session else None

    def all(self) -> List[ActiveSession]:
        with self._lock:
            sessions = [replace(s) for s in self._sessions.values()]
        return sorted(sessions, key=lambda s: s.start_time)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
            self._by_shopkeeper.clear()


class RedisSessionStore(SessionStore):
    """
    Redis-backed store for multi-process deployments.

    Keys pattern:
        {prefix}:session:{session_id}        hash with the session fields
        {prefix}:shopkeeper:{shopkeeper_id}  session id of the shopkeeper's open session
        {prefix}:sessions                    set of open session ids
    """

    def __init__(self, client: redis.Redis, prefix: str = 'vapestock', ttl_seconds: Optional[int] = None):
        self.client = client
        self._prefix = prefix
        self._ttl = ttl_seconds

    @classmethod
    def from_url(cls, url: str, prefix: str = 'vapestock', ttl_seconds: Optional[int] = None):
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=3,
            socket_timeout=3,
            socket_keepalive=True,
            retry_on_timeout=True,
            health_check_interval=30
        )
        return cls(client, prefix=prefix, ttl_seconds=ttl_seconds)

    def _session_key(self, session_id: str) -> str:
        return f"{self._prefix}:session:{session_id}"

    def _shopkeeper_key(self, shopkeeper_id: str) -> str:
        return f"{self._prefix}:shopkeeper:{shopkeeper_id}"

    @property
    def _index_key(self) -> str:
        return f"{self._prefix}:sessions"

    @staticmethod
    def _serialize(session: ActiveSession) -> dict:
        return {
            'session_id': session.session_id,
            'shopkeeper_id': session.shopkeeper_id,
            'shopkeeper_username': session.shopkeeper_username,
            'start_time': session.start_time.isoformat(),
            'sales_count': session.sales_count,
            'total_amount': session.total_amount,
            'shop': session.shop or '',
        }

    @staticmethod
    def _deserialize(data: dict) -> Optional[ActiveSession]:
        # A hash without identity fields is a leftover from an expired session
        if not data or 'shopkeeper_id' not in data:
            return None
        return ActiveSession(
            session_id=data['session_id'],
            shopkeeper_id=data['shopkeeper_id'],
            shopkeeper_username=data.get('shopkeeper_username', ''),
            start_time=datetime.fromisoformat(data['start_time']),
            sales_count=int(data.get('sales_count', 0)),
            total_amount=int(data.get('total_amount', 0)),
            shop=data.get('shop') or None,
        )

    def create(self, session: ActiveSession) -> None:
        shopkeeper_key = self._shopkeeper_key(session.shopkeeper_id)
        claimed = self.client.set(shopkeeper_key, session.session_id, nx=True, ex=self._ttl)
        if not claimed:
            existing_id = self.client.get(shopkeeper_key)
            if existing_id and self.client.exists(self._session_key(existing_id)):
                raise DuplicateSessionError(session.shopkeeper_username, existing_id)
            # Stale pointer (session hash expired) - take it over
            self.client.set(shopkeeper_key, session.session_id, ex=self._ttl)

        pipe = self.client.pipeline()
        pipe.hset(self._session_key(session.session_id), mapping=self._serialize(session))
        if self._ttl:
            pipe.expire(self._session_key(session.session_id), self._ttl)
        pipe.sadd(self._index_key, session.session_id)
        pipe.execute()

    def increment(self, session_id: str, amount_delta: int) -> Optional[ActiveSession]:
        key = self._session_key(session_id)
        if not self.client.exists(key):
            return None
        pipe = self.client.pipeline()
        pipe.hincrby(key, 'total_amount', int(amount_delta))
        pipe.hincrby(key, 'sales_count', 1)
        pipe.hgetall(key)
        results = pipe.execute()
        session = self._deserialize(results[-1])
        if session is None:
            # Expired between EXISTS and HINCRBY, drop the partial hash
            self.client.delete(key)
        return session

    def get(self, session_id: str) -> Optional[ActiveSession]:
        return self._deserialize(self.client.hgetall(self._session_key(session_id)))

    def pop(self, session_id: str) -> Optional[ActiveSession]:
        key = self._session_key(session_id)
        pipe = self.client.pipeline()
        pipe.hgetall(key)
        pipe.delete(key)
        pipe.srem(self._index_key, session_id)
        data = pipe.execute()[0]
        session = self._deserialize(data)
        if session is None:
            return None
        shopkeeper_key = self._shopkeeper_key(session.shopkeeper_id)
        if self.client.get(shopkeeper_key) == session_id:
            self.client.delete(shopkeeper_key)
        return session

    def find_by_shopkeeper(self, shopkeeper_id: str) -> Optional[ActiveSession]:
        session_id = self.client.get(self._shopkeeper_key(shopkeeper_id))
        return self.get(session_id) if session_id else None

    def all(self) -> List[ActiveSession]:
        sessions = []
        for session_id in self.client.smembers(self._index_key):
            session = self.get(session_id)
            if session is None:
                self.client.srem(self._index_key, session_id)
                continue
            sessions.append(session)
        return sorted(sessions, key=lambda s: s.start_time)


def build_session_store(config) -> SessionStore:
    """Create the configured session store, falling back to memory if Redis is unreachable."""
    backend = (config.get('SESSION_STORE_BACKEND') or 'memory').lower()

    if backend == 'memory':
        return InMemorySessionStore()

    if backend == 'redis':
        redis_url = config.get('REDIS_URL', 'redis://redis:6379/0')
        store = RedisSessionStore.from_url(
            redis_url,
            prefix=config.get('REDIS_KEY_PREFIX', 'vapestock'),
            ttl_seconds=config.get('SESSION_TTL_SECONDS')
        )
        try:
            store.client.ping()
            logger.info(f"[SESSIONS] Redis session store connected: {redis_url}")
            return store
        except RedisError as e:
            logger.warning(f"[SESSIONS] Redis connection failed: {e}. Falling back to in-memory sessions.")
            return InMemorySessionStore()

    raise ValueError(f"Unknown SESSION_STORE_BACKEND: {backend}")
