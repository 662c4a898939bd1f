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
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'fieldsales')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'fieldsales')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'fieldsales')

        DATABASE_URL = (
            f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Internal API (customers, policies, products, local sales store)
    API_BASE_URL = os.getenv('API_BASE_URL', 'http://localhost:3001')
    API_TOKEN = os.getenv('API_TOKEN')
    HTTP_TIMEOUT = float(os.getenv('HTTP_TIMEOUT', '15'))

    # ERP gateway (orders, balances, discounts go through /web/call-odoo-api)
    ODOO_URL = os.getenv('ODOO_URL', 'http://localhost:8069')
    ODOO_CREDENTIAL_ID = os.getenv('ODOO_CREDENTIAL_ID')
    ODOO_ADMIN_USER_ID = int(os.getenv('ODOO_ADMIN_USER_ID', '2'))
    ODOO_SESSION_TTL = int(os.getenv('ODOO_SESSION_TTL', '3600'))  # seconds

    # Compose sessions unused this long are dropped (seconds, 0 keeps them)
    COMPOSE_SESSION_TTL = int(os.getenv('COMPOSE_SESSION_TTL', '1800'))

    # Redis Cache Configuration
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    CACHE_ENABLED = os.getenv('CACHE_ENABLED', 'true').lower() == 'true'
    CACHE_DEFAULT_TTL = int(os.getenv('CACHE_DEFAULT_TTL', '60'))  # seconds
    CACHE_PACKAGINGS_TTL = int(os.getenv('CACHE_PACKAGINGS_TTL', '300'))
    CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'fieldsales')


class TestConfig(Config):
    """Configuration used by the test suite."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    CACHE_ENABLED = False
    API_BASE_URL = 'http://api.test'
    API_TOKEN = 'test-token'
    ODOO_URL = 'http://erp.test'
    ODOO_CREDENTIAL_ID = '7'
    HTTP_TIMEOUT = 5
