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
    TESTING = False

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        # Try DB_* variables (Docker style)
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'farms')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'farms')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'farms')

        DATABASE_URL = (
            f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'
    SQLALCHEMY_POOL_SIZE = int(os.getenv('SQLALCHEMY_POOL_SIZE', '10'))
    SQLALCHEMY_MAX_OVERFLOW = int(os.getenv('SQLALCHEMY_MAX_OVERFLOW', '20'))
    DB_CONNECT_TIMEOUT = int(os.getenv('DB_CONNECT_TIMEOUT', '5'))  # seconds

    # Default bound for every store statement (milliseconds, PostgreSQL only)
    STORE_STATEMENT_TIMEOUT_MS = int(os.getenv('STORE_STATEMENT_TIMEOUT_MS', '5000'))

    # Redis Cache Configuration
    # Cache-aside layer in front of PostgreSQL for tenant config/subscription/limits
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    CACHE_ENABLED = os.getenv('CACHE_ENABLED', 'true').lower() == 'true'
    CACHE_DEFAULT_TTL = int(os.getenv('CACHE_DEFAULT_TTL', '300'))  # seconds
    CACHE_LIMITS_TTL = int(os.getenv('CACHE_LIMITS_TTL', '3600'))
    CACHE_SOCKET_TIMEOUT = float(os.getenv('CACHE_SOCKET_TIMEOUT', '0.5'))  # seconds
    CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'farm')

    # Audit log writer
    AUDIT_ENABLED = os.getenv('AUDIT_ENABLED', 'true').lower() == 'true'
    AUDIT_ASYNC = os.getenv('AUDIT_ASYNC', 'true').lower() == 'true'
    AUDIT_MAX_WORKERS = int(os.getenv('AUDIT_MAX_WORKERS', '2'))

    # Onboarding
    FREE_PLAN_AUTO_APPROVE = os.getenv('FREE_PLAN_AUTO_APPROVE', 'false').lower() == 'true'
    FARM_ID_PREFIX = os.getenv('FARM_ID_PREFIX', 'MTD')
    TRIAL_DAYS = int(os.getenv('TRIAL_DAYS', '14'))
    RENEWAL_PERIOD_DAYS = int(os.getenv('RENEWAL_PERIOD_DAYS', '30'))

    # Legacy document store export used by `flask migrate-legacy`
    LEGACY_EXPORT_PATH = os.getenv('LEGACY_EXPORT_PATH')


class TestConfig(Config):
    """Configuration used by the test-suite (SQLite, synchronous audit)."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = os.getenv('TEST_DATABASE_URL', 'sqlite:///:memory:')
    SQLALCHEMY_ECHO = False
    CACHE_ENABLED = True
    AUDIT_ASYNC = False
    FREE_PLAN_AUTO_APPROVE = False
