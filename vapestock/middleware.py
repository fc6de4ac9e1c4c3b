"""Middleware for shop store resolution and shopkeeper session context."""
from functools import wraps

from flask import g, request, current_app

from vapestock.database import get_store_registry
from vapestock.exceptions import NotFoundError, SessionNotFoundError
from vapestock.services.session_service import Seller, get_session_registry, ensure_same_shop

SESSION_HEADER = 'X-Session-Id'


def get_shop_session(shop: str):
    """
    ORM session bound to the shop's store for the current request.

    Opened lazily, kept in g and closed by the teardown registered in init_db.
    """
    db_session = g.get('shop_session')
    if db_session is not None and g.get('shop') == shop:
        return db_session
    if db_session is not None:
        db_session.close()

    try:
        store = get_store_registry().get(shop)
    except ValueError:
        raise NotFoundError(f'Unknown shop: {shop}')

    g.shop = shop
    g.shop_session = store.new_session()
    return g.shop_session


def load_pos_session():
    """
    Load the shopkeeper's open session from the X-Session-Id header into g.

    Sets g.pos_session (ActiveSession) and g.seller (Seller) when valid.
    """
    g.pos_session = None
    g.seller = None

    session_id = request.headers.get(SESSION_HEADER, '').strip()
    if not session_id:
        return None

    active = get_session_registry().get_session(session_id)
    if active is None:
        current_app.logger.info(f"[AUTH] Unknown or closed session id on {request.path}")
        return None

    g.pos_session = active
    g.seller = Seller.from_session(active)
    return active


def require_pos_session(f):
    """
    Decorator: Require an open shopkeeper session.

    The authenticating layer in front of this API hands out the session id at
    login; every shop operation carries it in the X-Session-Id header. A
    session is only accepted by the shop it was opened in.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        active = load_pos_session()
        if active is None:
            raise SessionNotFoundError('No open session. Please log in again.')
        ensure_same_shop(active.shop, kwargs.get('shop'))
        return f(*args, **kwargs)

    return decorated_function
