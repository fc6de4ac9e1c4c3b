"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')

    # Per-shop databases - each shop gets its own isolated store.
    # The {shop} placeholder is replaced with the shop's database name.
    SHOP_DATABASE_URL_TEMPLATE = os.getenv('SHOP_DATABASE_URL_TEMPLATE')

    if not SHOP_DATABASE_URL_TEMPLATE:
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'vapestock')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'vapestock')

        SHOP_DATABASE_URL_TEMPLATE = (
            f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{{shop}}"
        )

    # SQLAlchemy
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'
    SQLALCHEMY_POOL_SIZE = int(os.getenv('SQLALCHEMY_POOL_SIZE', '5'))
    # Create missing tables the first time a shop store is used
    AUTO_CREATE_SCHEMA = os.getenv('AUTO_CREATE_SCHEMA', 'false').lower() == 'true'

    # Shop sessions (shopkeeper working sessions, NOT Flask cookies)
    # 'memory' keeps them in-process; 'redis' survives restarts and is shared across workers
    SESSION_STORE_BACKEND = os.getenv('SESSION_STORE_BACKEND', 'memory')
    SESSION_TTL_SECONDS = int(os.getenv('SESSION_TTL_SECONDS', str(24 * 60 * 60)))

    # Redis (session store + live update events)
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    REDIS_KEY_PREFIX = os.getenv('REDIS_KEY_PREFIX', 'vapestock')

    # Live update events (published for the socket gateway)
    EVENTS_ENABLED = os.getenv('EVENTS_ENABLED', 'true').lower() == 'true'
    EVENT_CHANNEL_PREFIX = os.getenv('EVENT_CHANNEL_PREFIX', 'vapestock')

    # Listings
    DEFAULT_PAGE_SIZE = int(os.getenv('DEFAULT_PAGE_SIZE', '20'))
    MAX_PAGE_SIZE = int(os.getenv('MAX_PAGE_SIZE', '100'))

    # Error tracking
    SENTRY_DSN = os.getenv('SENTRY_DSN')


class TestingConfig(Config):
    """Configuration used by the test-suite (SQLite per shop, in-memory sessions)."""

    TESTING = True
    DEBUG = False
    SHOP_DATABASE_URL_TEMPLATE = os.getenv(
        'TEST_SHOP_DATABASE_URL_TEMPLATE',
        'sqlite:///{shop}.sqlite3'
    )
    SQLALCHEMY_ECHO = False
    AUTO_CREATE_SCHEMA = True
    SESSION_STORE_BACKEND = 'memory'
    EVENTS_ENABLED = False
