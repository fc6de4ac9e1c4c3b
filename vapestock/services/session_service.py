"""
Session registry - tracks shopkeepers' active working sessions.

A session exists from login to logout. Nothing here is written to the shop
store: the only durable trace of a session is its id on transactions,
spendings and the session report produced at close time.
"""
import logging
import secrets
from dataclasses import dataclass, replace
from typing import List, Optional

from flask import Flask
from redis.exceptions import RedisError

from vapestock.exceptions import DuplicateSessionError, UnauthorizedError
from vapestock.services.session_store import (
    ActiveSession, SessionStore, InMemorySessionStore, build_session_store, utcnow
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Seller:
    """Who is selling, and in which session the sale is booked."""
    session_id: str
    shopkeeper_id: str
    username: str = 'Unknown'
    shop: Optional[str] = None

    @classmethod
    def from_session(cls, session: ActiveSession) -> 'Seller':
        return cls(session.session_id, session.shopkeeper_id, session.shopkeeper_username, session.shop)


def ensure_same_shop(bound_shop: Optional[str], shop: Optional[str]) -> None:
    """
    Reject use of a session in a shop other than the one it was opened in.

    Sessions without a recorded shop are accepted anywhere.

    Raises:
        UnauthorizedError: the session belongs to another shop
    """
    if bound_shop and shop and bound_shop != shop:
        raise UnauthorizedError(f'Session was opened in shop {bound_shop}')


def generate_session_id() -> str:
    """Opaque, unguessable session identifier."""
    return secrets.token_urlsafe(24)


class SessionRegistry:
    """Open/update/end shopkeeper sessions over a pluggable SessionStore."""

    def __init__(self, store: Optional[SessionStore] = None):
        self.store = store or InMemorySessionStore()

    def open_session(self, shopkeeper_id, username: str, shop: Optional[str] = None) -> str:
        """
        Start a session for a shopkeeper, bound to the shop it was opened in.

        Raises:
            DuplicateSessionError: the shopkeeper already has an open session
        """
        session = ActiveSession(
            session_id=generate_session_id(),
            shopkeeper_id=str(shopkeeper_id),
            shopkeeper_username=username,
            start_time=utcnow(),
            shop=shop,
        )
        self.store.create(session)
        logger.info(f"[SESSIONS] Opened session for {username} ({shopkeeper_id}) in {shop or 'any shop'}")
        return session.session_id

    def update_session(self, session_id: str, amount_delta: int) -> Optional[ActiveSession]:
        """
        Add a sale to the running totals.

        Never raises: a sale that already happened must not fail because of
        session bookkeeping. Unknown sessions are logged and ignored.
        """
        try:
            session = self.store.increment(session_id, int(amount_delta))
        except RedisError as e:
            logger.warning(f"[SESSIONS] Could not update session {session_id}: {e}")
            return None
        if session is None:
            logger.warning(f"[SESSIONS] Update for unknown session {session_id} ignored (amount {amount_delta})")
        return session

    def get_session(self, session_id: str) -> Optional[ActiveSession]:
        if not session_id:
            return None
        return self.store.get(session_id)

    def end_session(self, session_id: str) -> Optional[ActiveSession]:
        """Close the session and remove it from the registry. Returns the final snapshot."""
        if not session_id:
            return None
        session = self.store.pop(session_id)
        if session is None:
            return None
        session.end_time = utcnow()
        logger.info(
            f"[SESSIONS] Ended session of {session.shopkeeper_username}: "
            f"{session.sales_count} sales, total {session.total_amount}"
        )
        return session

    def restore_session(self, snapshot: ActiveSession) -> bool:
        """Put an ended session back, used when its report could not be written."""
        try:
            self.store.create(replace(snapshot, end_time=None))
        except (DuplicateSessionError, RedisError) as e:
            logger.error(f"[SESSIONS] Could not restore session {snapshot.session_id}: {e}")
            return False
        logger.warning(f"[SESSIONS] Restored session {snapshot.session_id} after failed close")
        return True

    def list_active_sessions(self) -> List[ActiveSession]:
        return self.store.all()

    def find_by_shopkeeper(self, shopkeeper_id) -> Optional[ActiveSession]:
        return self.store.find_by_shopkeeper(str(shopkeeper_id))


_session_registry: Optional[SessionRegistry] = None


def init_session_registry(app: Flask) -> None:
    """Initialize session registry singleton."""
    global _session_registry
    _session_registry = SessionRegistry(build_session_store(app.config))
    app.extensions['session_registry'] = _session_registry


def get_session_registry() -> SessionRegistry:
    """Get session registry instance."""
    if _session_registry is None:
        raise RuntimeError("Session registry not initialized.")
    return _session_registry
