# Coaching Attendance System Configuration

import os
import logging
from datetime import timedelta
from logging.handlers import RotatingFileHandler
from pathlib import Path

from coaching_attendance.errors import ConfigurationError
from coaching_attendance.modules.data_service import SQLITE_URL_PREFIX

# Base directory
BASE_DIR = Path(__file__).parent.absolute()


class Config:
    """Base configuration class"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'coaching-attendance-secret-key'

    # Data Service Configuration (both required)
    DATA_SERVICE_URL = os.environ.get('DATA_SERVICE_URL')
    DATA_SERVICE_KEY = os.environ.get('DATA_SERVICE_KEY')

    # Initial administrator, created on startup when both are set
    ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL')
    ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD')
    ADMIN_NAME = os.environ.get('ADMIN_NAME') or 'Administrator'

    # Session Configuration
    ACCESS_TOKEN_LIFETIME = timedelta(hours=1)
    SESSION_LIFETIME = timedelta(hours=8)  # refresh window without "remember me"
    REMEMBER_ME_LIFETIME = timedelta(days=30)
    PERMANENT_SESSION_LIFETIME = REMEMBER_ME_LIFETIME
    SESSION_COOKIE_SECURE = False  # Set to True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # View Configuration
    VIEW_SCOPE_TTL = timedelta(minutes=int(os.environ.get('VIEW_SCOPE_TTL_MINUTES') or 30))

    # Report Configuration
    REPORTS_DEFAULT_RANGE = '7days'

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FILE = BASE_DIR / 'logs' / 'attendance.log'
    LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5

    # Development Configuration
    DEBUG = os.environ.get('DEBUG', 'False').lower() in ['true', 'on', '1']
    TESTING = False

    @staticmethod
    def init_app(app):
        """Initialize application configuration"""
        logging.getLogger().setLevel(app.config.get('LOG_LEVEL', 'INFO'))


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    LOG_LEVEL = 'DEBUG'


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True
    SECRET_KEY = 'test-secret'
    VIEW_SCOPE_TTL = timedelta(minutes=5)


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    # Enhanced security for production
    SESSION_COOKIE_SECURE = True  # Requires HTTPS

    # Production logging
    LOG_LEVEL = 'WARNING'

    @classmethod
    def init_app(cls, app):
        Config.init_app(app)

        # Setup file logging
        if not app.debug:
            cls.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                cls.LOG_FILE,
                maxBytes=cls.LOG_MAX_BYTES,
                backupCount=cls.LOG_BACKUP_COUNT
            )
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
            ))
            file_handler.setLevel(logging.INFO)
            app.logger.addHandler(file_handler)

            app.logger.setLevel(logging.INFO)
            app.logger.info('Coaching Attendance System startup')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config():
    """Get configuration based on environment variable"""
    return config.get(os.environ.get('FLASK_ENV', 'default'), DevelopmentConfig)


def validate_config(settings):
    """
    Validate configuration settings.

    Args:
        settings: Mapping of configuration values (e.g. app.config)

    Returns:
        list: Error messages, empty when the configuration is usable
    """
    errors = []

    url = settings.get('DATA_SERVICE_URL')
    if not url:
        errors.append("DATA_SERVICE_URL is required")
    elif not url.startswith(SQLITE_URL_PREFIX) or len(url) == len(SQLITE_URL_PREFIX):
        errors.append(f"DATA_SERVICE_URL must look like {SQLITE_URL_PREFIX}<path>: {url}")

    if not settings.get('DATA_SERVICE_KEY'):
        errors.append("DATA_SERVICE_KEY is required")

    if not settings.get('SECRET_KEY'):
        errors.append("SECRET_KEY is required")

    return errors


def init_config(app, config_name=None, overrides=None):
    """
    Initialize application with configuration.

    Raises:
        ConfigurationError: When required settings are missing or malformed
    """
    config_class = config.get(config_name, DevelopmentConfig) if config_name else get_config()
    app.config.from_object(config_class)
    if overrides:
        app.config.update(overrides)

    errors = validate_config(app.config)
    if errors:
        for error in errors:
            app.logger.error(f"Configuration error: {error}")
        raise ConfigurationError("Configuration validation failed: " + "; ".join(errors))

    config_class.init_app(app)
    return config_class
