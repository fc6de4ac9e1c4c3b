"""Database configuration and initialization - one isolated store per shop."""
import logging
import re
import threading
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

logger = logging.getLogger(__name__)

# Create SQLAlchemy base (shared by every shop schema)
Base = declarative_base()

# Shop database names end up in connection URLs, keep them boring
SHOP_NAME_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_\-]{0,62}$')


class StoreHandle:
    """
    Handle on a single shop's isolated store.

    Business services never look a store up by themselves: callers obtain a
    handle for the shop and pass a session bound to it into each operation.
    """

    def __init__(self, shop: str, engine):
        self.shop = shop
        self.engine = engine
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def __repr__(self):
        return f"<StoreHandle(shop='{self.shop}', url='{self.engine.url.render_as_string(hide_password=True)}')>"

    def new_session(self):
        """Open a new ORM session on this shop's store. Caller must close it."""
        return self._session_factory()

    @contextmanager
    def session_scope(self):
        """Session context manager - rolls back on error and always closes."""
        session = self.new_session()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_schema(self):
        """Create all tables for this shop (idempotent)."""
        # Import models so metadata is populated
        from vapestock import models  # noqa: F401
        Base.metadata.create_all(self.engine)

    def drop_schema(self):
        from vapestock import models  # noqa: F401
        Base.metadata.drop_all(self.engine)

    def dispose(self):
        self.engine.dispose()


def build_engine(database_uri: str, echo: bool = False, pool_size: int = 5):
    """Create an engine with sane defaults for the backend in use."""
    options = {'echo': echo}
    if not database_uri.startswith('sqlite'):
        options.update(
            pool_pre_ping=True,  # Enable connection health checks
            pool_size=pool_size,
            max_overflow=pool_size * 2
        )
    return create_engine(database_uri, **options)


class ShopStoreRegistry:
    """
    Resolves shop database names to store handles.

    Engines are created lazily, once per shop, and cached for the life of the
    process. Provisioning of the underlying databases is out of scope here;
    `StoreHandle.create_schema()` only creates tables.
    """

    def __init__(self, url_template: str, echo: bool = False, pool_size: int = 5,
                 auto_create_schema: bool = False):
        if '{shop}' not in url_template:
            raise ValueError("SHOP_DATABASE_URL_TEMPLATE must contain a '{shop}' placeholder")
        self.url_template = url_template
        self.echo = echo
        self.pool_size = pool_size
        self.auto_create_schema = auto_create_schema
        self._stores = {}
        self._lock = threading.Lock()

    def get(self, shop: str) -> StoreHandle:
        """Get (or lazily create) the store handle for a shop."""
        if not shop or not SHOP_NAME_PATTERN.match(shop):
            raise ValueError(f"Invalid shop database name: {shop!r}")

        with self._lock:
            store = self._stores.get(shop)
            if store is None:
                engine = build_engine(
                    self.url_template.format(shop=shop),
                    echo=self.echo,
                    pool_size=self.pool_size
                )
                store = StoreHandle(shop, engine)
                if self.auto_create_schema:
                    store.create_schema()
                self._stores[shop] = store
                logger.info(f"[DB] Store registered for shop '{shop}'")
            return store

    def known_shops(self):
        with self._lock:
            return sorted(self._stores.keys())

    def dispose_all(self):
        with self._lock:
            for store in self._stores.values():
                store.dispose()
            self._stores.clear()


_store_registry = None


def init_db(app):
    """Initialize the per-shop store registry and request teardown."""
    global _store_registry

    _store_registry = ShopStoreRegistry(
        app.config['SHOP_DATABASE_URL_TEMPLATE'],
        echo=app.config.get('SQLALCHEMY_ECHO', False),
        pool_size=app.config.get('SQLALCHEMY_POOL_SIZE', 5),
        auto_create_schema=app.config.get('AUTO_CREATE_SCHEMA', False)
    )
    app.extensions['shop_stores'] = _store_registry

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close the shop session opened for this request, rolling back on error."""
        from flask import g
        session = g.pop('shop_session', None)
        if session is not None:
            if exception:
                session.rollback()
            session.close()


def get_store_registry() -> ShopStoreRegistry:
    """Get the store registry singleton."""
    if _store_registry is None:
        raise RuntimeError("Store registry not initialized.")
    return _store_registry
