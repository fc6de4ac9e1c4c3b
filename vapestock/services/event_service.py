"""
Live update events for the socket gateway.

Events are published on Redis channels so any process running the socket
transport can relay them:
    {prefix}:shop:{shop}   shop screens (stock, bottles, sales)
    {prefix}:admin         admin dashboard

Publishing degrades gracefully: a sale never fails because an event could
not be delivered.
"""
import json
import logging
from datetime import datetime, date
from typing import Any, Callable, Dict, List, Optional

import redis
from redis.exceptions import RedisError, ConnectionError, TimeoutError
from flask import Flask

logger = logging.getLogger(__name__)

SALE_COMPLETED = 'sale:completed'
STOCK_UPDATED = 'stock:updated'
BOTTLE_OPENED = 'bottle:opened'
BOTTLE_UPDATED = 'bottle:updated'
SESSION_ENDED = 'session:ended'
SESSION_RECONCILED = 'session:reconciled'

# Events that also go to the admin room
ADMIN_EVENTS = {SALE_COMPLETED, BOTTLE_OPENED, SESSION_ENDED, SESSION_RECONCILED}
# Events that only the admin room receives
ADMIN_ONLY_EVENTS = {SESSION_ENDED, SESSION_RECONCILED}

Listener = Callable[[str, str, dict], None]


class EventBroadcaster:
    """Publishes live update events to Redis and to in-process listeners."""

    def __init__(self, app: Optional[Flask] = None):
        self.client: Optional[redis.Redis] = None
        self._enabled: bool = False
        self._prefix: str = 'vapestock'
        self._listeners: List[Listener] = []

        if app:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        """Initialize Redis client from Flask app config."""
        self._enabled = app.config.get('EVENTS_ENABLED', True)
        self._prefix = app.config.get('EVENT_CHANNEL_PREFIX', 'vapestock')
        redis_url = app.config.get('REDIS_URL', 'redis://redis:6379/0')

        if not self._enabled:
            logger.info("[EVENTS] Redis publishing is DISABLED via config")
            return

        try:
            self.client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=3,
                retry_on_timeout=True
            )
            self.client.ping()
            logger.info(f"[EVENTS] Redis connected: {redis_url}")
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"[EVENTS] Redis connection failed: {e}. Publishing DISABLED.")
            self._enabled = False
            self.client = None

    def subscribe(self, listener: Listener) -> None:
        """Register an in-process listener called as listener(shop, event, data)."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def shop_channel(self, shop: str) -> str:
        return f"{self._prefix}:shop:{shop}"

    @property
    def admin_channel(self) -> str:
        return f"{self._prefix}:admin"

    def _serialize(self, message: Dict[str, Any]) -> str:
        def default_handler(obj: Any) -> Any:
            if isinstance(obj, (datetime, date)):
                return obj.isoformat()
            raise TypeError(f"Object of type {type(obj)} is not JSON serializable")
        return json.dumps(message, default=default_handler)

    def emit(self, shop: str, event: str, data: dict) -> None:
        """Emit an event for a shop. Never raises."""
        for listener in list(self._listeners):
            try:
                listener(shop, event, data)
            except Exception as e:
                logger.warning(f"[EVENTS] Listener error for {event}: {e}")

        if not self._enabled or not self.client:
            return

        try:
            payload = self._serialize({'event': event, 'shop': shop, 'data': data})
            pipe = self.client.pipeline()
            if event not in ADMIN_ONLY_EVENTS:
                pipe.publish(self.shop_channel(shop), payload)
            if event in ADMIN_EVENTS:
                pipe.publish(self.admin_channel, payload)
            pipe.execute()
        except (RedisError, TypeError) as e:
            logger.warning(f"[EVENTS] Publish error for {event}: {e}")


_broadcaster: Optional[EventBroadcaster] = None


def init_events(app: Flask) -> None:
    """Initialize event broadcaster singleton."""
    global _broadcaster
    _broadcaster = EventBroadcaster(app)
    app.extensions['events'] = _broadcaster


def get_broadcaster() -> EventBroadcaster:
    """Get event broadcaster instance (an inert one if the app never initialized it)."""
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = EventBroadcaster()
    return _broadcaster


def emit_event(shop: str, event: str, data: dict) -> None:
    """Gracefully attempt to emit a live update event."""
    try:
        get_broadcaster().emit(shop, event, data)
    except Exception as e:
        logger.warning(f"[EVENTS] Could not emit {event}: {e}")
