import pytest

from config import TestingConfig
from vapestock import create_app
from vapestock.database import StoreHandle, build_engine
from vapestock.models import Product, ProductCategory
from vapestock.services.event_service import get_broadcaster
from vapestock.services.session_service import SessionRegistry, Seller
from vapestock.services.session_store import InMemorySessionStore

SHOP = 'test_shop'


@pytest.fixture(scope='function')
def app(tmp_path):
    """Create application instance for testing (SQLite file per shop under tmp_path)."""
    config = type('PerTestConfig', (TestingConfig,), {
        'SHOP_DATABASE_URL_TEMPLATE': f'sqlite:///{tmp_path}/{{shop}}.sqlite3',
    })
    app = create_app(config)
    yield app
    app.extensions['shop_stores'].dispose_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def store(tmp_path):
    """Isolated shop store with its schema created."""
    store = StoreHandle(SHOP, build_engine(f'sqlite:///{tmp_path}/{SHOP}.sqlite3'))
    store.create_schema()
    yield store
    store.dispose()


@pytest.fixture(scope='function')
def session(store):
    """Create database session for testing."""
    session = store.new_session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(scope='function')
def registry():
    """Session registry backed by a fresh in-memory store."""
    return SessionRegistry(InMemorySessionStore())


@pytest.fixture(scope='function')
def seller(registry):
    """Shopkeeper with a session open in the test shop."""
    session_id = registry.open_session('sk-1', 'alice', shop=SHOP)
    return Seller(session_id, 'sk-1', 'alice', shop=SHOP)


@pytest.fixture(scope='function')
def events():
    """Capture live update events as (shop, event, data) tuples."""
    captured = []

    def listener(shop, event, data):
        captured.append((shop, event, data))

    broadcaster = get_broadcaster()
    broadcaster.subscribe(listener)
    yield captured
    broadcaster.unsubscribe(listener)


@pytest.fixture(scope='function')
def device(session):
    """Device with 5 units at 100."""
    product = Product(
        name='Nord 4',
        brand='Smok',
        category=ProductCategory.DEVICE,
        units=5,
        sell_price=100,
        cost_price=60
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def e_liquid(session):
    """E-Liquid with 3 sealed 100ml bottles at 1000 each."""
    product = Product(
        name='Mango Ice',
        brand='Nasty',
        category=ProductCategory.E_LIQUID,
        flavour='Mango',
        units=3,
        sell_price=1000,
        cost_price=600,
        ml_capacity=100
    )
    session.add(product)
    session.commit()
    return product
