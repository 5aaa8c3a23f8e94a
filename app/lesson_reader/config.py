"""Flask application configuration."""
import os
from datetime import timedelta


class Config:
    """Base configuration."""

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        'DATABASE_URL',
        'sqlite:///lesson_reader.db'
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
    }

    # Session
    PERMANENT_SESSION_LIFETIME = timedelta(days=7)
    SESSION_COOKIE_SECURE = False  # Set True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Media (uploaded audio, generated audio and cover images)
    MEDIA_ROOT = os.environ.get('MEDIA_ROOT')  # defaults to <app>/static/media
    MAX_CONTENT_LENGTH = 25 * 1024 * 1024

    # Application
    SUPPORTED_LANGUAGES = ('english', 'french')
    DIFFICULTY_LEVELS = ('beginner', 'intermediate', 'advanced')
    TRANSLATION_TARGET_LANGUAGE = os.environ.get('TRANSLATION_TARGET_LANGUAGE', 'portuguese')
    COVER_IMAGES_ENABLED = os.environ.get('COVER_IMAGES_ENABLED', 'true').strip().lower() in {'1', 'true', 'yes'}

    # CORS (for development)
    CORS_ALLOWED_ORIGINS = os.environ.get('CORS_ALLOWED_ORIGINS', '*')


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False
    SESSION_COOKIE_SECURE = True


class TestingConfig(Config):
    """Test configuration (in-memory database, no cover images)."""
    DEBUG = False
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    COVER_IMAGES_ENABLED = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
