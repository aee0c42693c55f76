#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Application configuration settings
Separated from main app for better maintainability
"""
import os

# Base configuration
BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
DB_PATH = os.environ.get("CFPT_DB_PATH", os.path.join(BASE_DIR, "app.db"))
UPLOAD_DIR = os.path.join(BASE_DIR, "uploads")
EXPORT_DIR = os.path.join(BASE_DIR, "exports")
BACKUP_DIR = os.path.join(BASE_DIR, "backups")

# Application settings
APP_TITLE = "CFPT Ivato · Évaluations des formations"
COMPANY_NAME = "CFPT Ivato"
SECRET_KEY = os.environ.get("APP_SECRET_KEY", "dev-secret-change-in-production")
ALLOWED_EXTENSIONS = {"xlsx", "xls", "json"}
MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB uploads


# Security configuration
class SecurityConfig:
    # Session Security
    SESSION_COOKIE_SECURE = os.environ.get("SESSION_COOKIE_SECURE", "False").lower() == "true"
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    PERMANENT_SESSION_LIFETIME = int(os.environ.get("SESSION_TIMEOUT", 3600 * 8))  # 8 hours default

    # Security Headers
    X_FRAME_OPTIONS = "DENY"
    X_CONTENT_TYPE_OPTIONS = "nosniff"
    X_XSS_PROTECTION = "1; mode=block"
    REFERRER_POLICY = "strict-origin-when-cross-origin"

    # Content Security Policy
    CSP = {
        "default-src": "'self'",
        "img-src": "'self' data:",
        "object-src": "'none'"
    }


# Database configuration
class DatabaseConfig:
    # Enable foreign key constraints
    FOREIGN_KEYS = True

    # Performance settings
    JOURNAL_MODE = "WAL"
    SYNCHRONOUS = "NORMAL"
    CACHE_SIZE = 2000  # Cache size in pages

    # Connection settings
    TIMEOUT = 20.0  # Database lock timeout in seconds
    CHECK_SAME_THREAD = False


# Change propagation and read cache
class SyncConfig:
    CACHE_TTL = 30  # seconds
    EVENT_LOG_SIZE = 100


# Background operation queue
class QueueConfig:
    OPERATION_TIMEOUT = 10.0  # seconds per operation
    YIELD_INTERVAL = 0.005  # pause between two operations
    PRIORITIES = {
        "GET": 3,
        "CREATE": 2,
        "UPDATE": 2,
        "DELETE": 1,
    }
    DEFAULT_PRIORITY = 2


# Evaluation lifecycle
class EvaluationConfig:
    FOLLOW_UP_MONTHS = 6
    DAYS_PER_MONTH = 30
    STALE_DRAFT_DAYS = 90
    AUDIT_RETENTION_DAYS = 90
    RECENT_EVALUATIONS = 5


# Application environment
class Config:
    """Base configuration class"""

    DATABASE = DB_PATH
    BACKUP_DIR = BACKUP_DIR
    LOG_DIR = None  # defaults to <app root>/logs
    MAX_CONTENT_LENGTH = MAX_CONTENT_LENGTH
    START_QUEUE_WORKER = True

    def __init__(self):
        self.SECRET_KEY = SECRET_KEY

        # Security settings
        for key, value in vars(SecurityConfig).items():
            if not key.startswith('_'):
                setattr(self, key, value)

        # Database settings
        for key, value in vars(DatabaseConfig).items():
            if not key.startswith('_'):
                setattr(self, key, value)


class DevelopmentConfig(Config):
    """Development environment configuration"""
    DEBUG = True
    TESTING = False
    SESSION_COOKIE_SECURE = False


class ProductionConfig(Config):
    """Production environment configuration"""
    DEBUG = False
    TESTING = False

    # SECRET_KEY is validated when this config is actually used
    SECRET_KEY = os.environ.get("SECRET_KEY") or None

    def __init__(self):
        if not self.SECRET_KEY:
            raise ValueError("SECRET_KEY environment variable must be set in production")
        secret_key = self.SECRET_KEY
        super().__init__()
        self.SECRET_KEY = secret_key
        self.SESSION_COOKIE_SECURE = True


class TestingConfig(Config):
    """Testing environment configuration"""
    DEBUG = True
    TESTING = True
    SESSION_COOKIE_SECURE = False


# Configuration selection
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


def get_config(config_name=None):
    """Get configuration class based on environment"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'default')

    return config.get(config_name, config['default'])()
