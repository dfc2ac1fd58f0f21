"""
Document Lifecycle Platform
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'doclife_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _env_int(name, default):
    return int(os.getenv(name, str(default)))


def _env_bool(name, default):
    return os.getenv(name, "true" if default else "false").lower() == "true"


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
    }

    # Logging (empty: DEBUG in development, INFO in production)
    LOG_LEVEL = os.getenv("LOG_LEVEL")

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Rate limiting storage (memory for dev, Redis URL in production)
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")

    # Shared secret an external cron may present in X-Cron-Secret
    CRON_SECRET = os.getenv("CRON_SECRET")

    # Base URL used to build absolute links in outbound email
    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:5000")

    # Edit locks
    LOCK_DURATION_MINUTES = _env_int("LOCK_DURATION_MINUTES", 30)

    # Expiration alert defaults (an alert_configurations row overrides these)
    ALERT_FIRST_DAYS = _env_int("ALERT_FIRST_DAYS", 30)
    ALERT_SECOND_DAYS = _env_int("ALERT_SECOND_DAYS", 15)
    ALERT_THIRD_DAYS = _env_int("ALERT_THIRD_DAYS", 7)
    ALERT_FINAL_DAYS = _env_int("ALERT_FINAL_DAYS", 1)
    ALERT_ESCALATION_ENABLED = _env_bool("ALERT_ESCALATION_ENABLED", True)
    ALERT_ESCALATION_DAYS = _env_int("ALERT_ESCALATION_DAYS", 3)
    ALERT_MAX_ESCALATION_LEVEL = _env_int("ALERT_MAX_ESCALATION_LEVEL", 3)
    ALERT_EMAIL_ENABLED = _env_bool("ALERT_EMAIL_ENABLED", True)

    # Housekeeping retention (days)
    EMAIL_LOG_RETENTION_DAYS = _env_int("EMAIL_LOG_RETENTION_DAYS", 30)
    TASK_EXECUTION_RETENTION_DAYS = _env_int("TASK_EXECUTION_RETENTION_DAYS", 90)
    READ_NOTIFICATION_RETENTION_DAYS = _env_int("READ_NOTIFICATION_RETENTION_DAYS", 30)

    # Backups
    BACKUP_DIR = os.getenv("BACKUP_DIR", os.path.join(basedir, "backups"))
    BACKUP_KEEP = _env_int("BACKUP_KEEP", 10)

    # Email / SMTP (optional; dev mode logs without sending)
    MAIL_SERVER = os.getenv("MAIL_SERVER")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = os.getenv("MAIL_USE_TLS", "true").lower() == "true"
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "noreply@doclife.local")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else _SQLITE_DEV
    )


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    CRON_SECRET = "test-cron-secret"
    MAIL_SERVER = None
    BACKUP_DIR = os.path.join(basedir, "instance", "test-backups")


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Heroku-style URLs use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
