"""
Configuration for the Coin Ledger service.

Values come from the environment (a local .env file is loaded first):

    DATABASE_URL          SQLAlchemy URL (postgres:// is accepted)
    SECRET_KEY            Required in production
    LOG_LEVEL             Root log level (INFO)
    REDIS_URL             Optional cache backend
    CORS_ORIGINS          Comma-separated allowed origins
    LEDGER_CAS_RETRIES    Conditional-update attempts per mutation (3)
    DEFAULT_HISTORY_LIMIT Rows per history page (50)
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, '') else default


def _database_url(default: str = '') -> str:
    url = os.getenv('DATABASE_URL', default)
    # SQLAlchemy only accepts the postgresql:// scheme
    if url.startswith('postgres://'):
        url = url.replace('postgres://', 'postgresql://', 1)
    return url


class BaseConfig:
    """Settings shared by every environment."""
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    LEDGER_CAS_RETRIES = _int_env('LEDGER_CAS_RETRIES', 3)
    DEFAULT_HISTORY_LIMIT = _int_env('DEFAULT_HISTORY_LIMIT', 50)
    MAX_HISTORY_LIMIT = _int_env('MAX_HISTORY_LIMIT', 200)

    CORS_ORIGINS = [
        origin.strip()
        for origin in os.getenv('CORS_ORIGINS', 'http://localhost:5173').split(',')
        if origin.strip()
    ]


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url('sqlite:///coinledger_dev.db')


class ProductionConfig(BaseConfig):
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _database_url()
    SECRET_KEY = os.getenv('SECRET_KEY', '')

    # Conditional balance updates rely on READ COMMITTED re-reading the row
    # after a blocking writer commits
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': _int_env('DB_POOL_SIZE', 5),
        'pool_recycle': 300,
        'pool_pre_ping': True,
        'isolation_level': 'READ COMMITTED',
    }

    INSECURE_KEY_MARKERS = ('dev', 'change', 'default', 'test', 'secret', 'password')

    @classmethod
    def validate(cls) -> None:
        """
        Refuse to start production without a database and a strong SECRET_KEY.

        Raises:
            RuntimeError: Describing the first problem found
        """
        if not cls.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("CRITICAL: DATABASE_URL environment variable is not set!")

        key = cls.SECRET_KEY or ''
        if not key:
            raise RuntimeError(
                "CRITICAL: SECRET_KEY environment variable is not set!\n"
                "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )
        for marker in cls.INSECURE_KEY_MARKERS:
            if marker in key.lower():
                raise RuntimeError(
                    f"CRITICAL: SECRET_KEY contains '{marker}' which suggests it's not secure!"
                )
        if len(key) < 32:
            raise RuntimeError("CRITICAL: SECRET_KEY is too short (minimum 32 characters required)!")


class TestingConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    CACHE_TYPE = 'NullCache'


config_map = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig
}


def get_config(config_name: str = 'development'):
    """Get configuration class by name."""
    return config_map.get(config_name, DevelopmentConfig)


def validate_config(config_name: str = 'development') -> None:
    """
    Validate configuration before app startup.

    Raises:
        RuntimeError: If validation fails
    """
    config = get_config(config_name)
    if config.LEDGER_CAS_RETRIES < 1:
        raise RuntimeError("LEDGER_CAS_RETRIES must be at least 1")
    if config.DEFAULT_HISTORY_LIMIT < 1 or config.DEFAULT_HISTORY_LIMIT > config.MAX_HISTORY_LIMIT:
        raise RuntimeError("DEFAULT_HISTORY_LIMIT must be between 1 and MAX_HISTORY_LIMIT")
    if config_name == 'production':
        ProductionConfig.validate()
