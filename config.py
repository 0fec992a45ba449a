"""
Application Configuration
Loads environment variables and provides configuration classes for different environments
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
basedir = os.path.abspath(os.path.dirname(__file__))
load_dotenv(os.path.join(basedir, '.env'))


class Config:
    """Base configuration class"""

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'

    # Local database (optimistic snapshot + pending operation log)
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'kstore_local.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = False

    # Authoritative backend
    REMOTE_API_URL = os.environ.get('REMOTE_API_URL', 'http://localhost:3000')
    REMOTE_TIMEOUT_SECONDS = float(os.environ.get('REMOTE_TIMEOUT_SECONDS', 10))

    # Sync
    ENABLE_SYNC = os.environ.get('ENABLE_SYNC', 'True').lower() == 'true'
    AUTO_SYNC = os.environ.get('AUTO_SYNC', 'True').lower() == 'true'
    SYNC_INTERVAL_SECONDS = int(os.environ.get('SYNC_INTERVAL_SECONDS', 30))
    SYNC_SETTLE_SECONDS = float(os.environ.get('SYNC_SETTLE_SECONDS', 2))
    CONNECTIVITY_CHECK_SECONDS = int(os.environ.get('CONNECTIVITY_CHECK_SECONDS', 15))
    SYNC_RETENTION_HOURS = int(os.environ.get('SYNC_RETENTION_HOURS', 24))
    SYNC_ON_WRITE = os.environ.get('SYNC_ON_WRITE', 'True').lower() == 'true'
    # Drop an unsynced create when the same offline entity is deleted before it syncs
    FOLD_OFFLINE_CREATE_DELETE = os.environ.get('FOLD_OFFLINE_CREATE_DELETE', 'True').lower() == 'true'

    # Local store
    STORE_NAME = os.environ.get('STORE_NAME', 'kstore-global')
    LOCAL_ID_PREFIX = os.environ.get('LOCAL_ID_PREFIX', 'offline_')

    # Business Configuration
    BUSINESS_NAME = os.environ.get('BUSINESS_NAME', 'KStore')
    CURRENCY = os.environ.get('CURRENCY', 'EGP')

    # Logging
    LOG_FOLDER = os.path.join(basedir, 'logs')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = False  # Set to True to see SQL queries


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    AUTO_SYNC = False
    SYNC_ON_WRITE = False
    SYNC_SETTLE_SECONDS = 0
    REMOTE_API_URL = 'http://kstore.test'


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
