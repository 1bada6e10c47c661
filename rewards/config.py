"""
Configuration management for the rewards engine.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class BaseConfig:
    """Base configuration."""
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Shopify app credentials (session tokens, app proxy and webhooks are all
    # signed with the API secret)
    SHOPIFY_API_KEY = os.getenv('SHOPIFY_API_KEY', '')
    SHOPIFY_API_SECRET = os.getenv('SHOPIFY_API_SECRET', '')
    SHOPIFY_API_VERSION = os.getenv('SHOPIFY_API_VERSION', '2025-01')

    # Remote discount creation must not hang a redemption request
    SHOPIFY_DISCOUNT_TIMEOUT_SECONDS = float(os.getenv('SHOPIFY_DISCOUNT_TIMEOUT_SECONDS', '10'))

    # Optional callable(shop) -> ShopifyClient, used to swap the remote client
    SHOPIFY_CLIENT_FACTORY = None

    WEBHOOK_VERIFY_HMAC = _env_bool('WEBHOOK_VERIFY_HMAC', True)

    REDEMPTION_CODE_PREFIX = os.getenv('REDEMPTION_CODE_PREFIX', 'RWD')

    # A debited redemption still without a discount after this long was abandoned
    REDEMPTION_PENDING_GRACE_SECONDS = int(os.getenv('REDEMPTION_PENDING_GRACE_SECONDS', '120'))

    # Scheduled job protection
    JOB_TOKEN = os.getenv('JOB_TOKEN', '')
    JOB_LOCK_TTL_SECONDS = int(os.getenv('JOB_LOCK_TTL_SECONDS', '300'))
    ALLOW_UNAUTHENTICATED_JOBS = True

    INACTIVITY_BATCH_SIZE = int(os.getenv('INACTIVITY_BATCH_SIZE', '250'))


class DevelopmentConfig(BaseConfig):
    """Development configuration."""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.getenv(
        'DATABASE_URL',
        'sqlite:///rewards_dev.db'  # SQLite fallback for local dev
    )


class ProductionConfig(BaseConfig):
    """Production configuration."""
    DEBUG = False

    _db_url = os.getenv('DATABASE_URL', '')
    if _db_url.startswith('postgres://'):
        # SQLAlchemy requires postgresql:// not postgres://
        _db_url = _db_url.replace('postgres://', 'postgresql://', 1)

    SQLALCHEMY_DATABASE_URI = _db_url

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 5,
        'pool_recycle': 300,
        'pool_pre_ping': True,
    }

    # Job endpoints refuse to run without a configured token
    ALLOW_UNAUTHENTICATED_JOBS = False

    _secret_key = os.getenv('SECRET_KEY', '')

    @classmethod
    def validate_secret_key(cls) -> str:
        """
        Validate SECRET_KEY in production environment.

        Raises:
            RuntimeError: If SECRET_KEY is missing, empty, or too short
        """
        if not cls._secret_key:
            raise RuntimeError(
                "CRITICAL: SECRET_KEY environment variable is not set!\n"
                "Production deployments MUST have a secure SECRET_KEY."
            )

        if len(cls._secret_key) < 32:
            raise RuntimeError(
                "CRITICAL: SECRET_KEY is too short (minimum 32 characters required)!"
            )

        return cls._secret_key

    @classmethod
    def validate_shopify_credentials(cls) -> None:
        """Webhook and session verification are impossible without the API secret."""
        if not cls.SHOPIFY_API_SECRET:
            raise RuntimeError("CRITICAL: SHOPIFY_API_SECRET environment variable is not set!")

    SECRET_KEY = _secret_key  # Will be validated at app startup


class TestingConfig(BaseConfig):
    """Testing configuration."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    SHOPIFY_API_KEY = 'test-api-key'
    SHOPIFY_API_SECRET = 'test-api-secret'
    JOB_TOKEN = 'test-job-token'
    REDEMPTION_CODE_PREFIX = 'TEST'
    JOB_LOCK_TTL_SECONDS = 120


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

    Args:
        config_name: The configuration environment name

    Raises:
        RuntimeError: If validation fails in production
    """
    if config_name == 'production':
        ProductionConfig.validate_secret_key()
        ProductionConfig.validate_shopify_credentials()
