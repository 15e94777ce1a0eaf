"""
Configuration file for the Community Hazard Map backend.
"""
import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Base configuration"""
    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    # Opt-in via FLASK_DEBUG=true
    DEBUG = os.getenv('FLASK_DEBUG', 'False').lower() == 'true'
    TESTING = False
    PORT = int(os.getenv('PORT', '3001'))
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

    # Firebase (optional persistent incident store)
    FIREBASE_CREDENTIALS_PATH = os.getenv('FIREBASE_CREDENTIALS_PATH')
    FIREBASE_DATABASE_URL = os.getenv('FIREBASE_DATABASE_URL')
    FIREBASE_INCIDENTS_PATH = os.getenv('FIREBASE_INCIDENTS_PATH', 'incidents')

    # Valhalla routing provider
    VALHALLA_BASE_URL = os.getenv('VALHALLA_BASE_URL', 'https://valhalla1.openstreetmap.de')
    VALHALLA_TIMEOUT_SECONDS = float(os.getenv('VALHALLA_TIMEOUT_SECONDS', '10'))
    # Public Valhalla allows 1 call/user/sec; 1.1s to be safe
    VALHALLA_MIN_INTERVAL_SECONDS = float(os.getenv('VALHALLA_MIN_INTERVAL_SECONDS', '1.1'))

    # Incident filtering
    INCIDENT_MAX_AGE_HOURS = float(os.getenv('INCIDENT_MAX_AGE_HOURS', '24'))
    DEFAULT_BUFFER_KM = float(os.getenv('DEFAULT_BUFFER_KM', '2'))
    INCIDENT_CLEANUP_DAYS = float(os.getenv('INCIDENT_CLEANUP_DAYS', '7'))

    # CORS
    CORS_ORIGINS = [
        origin.strip()
        for origin in os.getenv('CORS_ORIGINS', 'http://localhost:3000,http://127.0.0.1:3000').split(',')
        if origin.strip()
    ]

    # Rate Limiting (Flask-Limiter); REDIS_URL enables shared limits across workers
    RATE_LIMIT_ENABLED = os.getenv('RATE_LIMIT_ENABLED', 'True').lower() == 'true'
    RATE_LIMIT_STORAGE_URI = os.getenv('REDIS_URL', 'memory://')


class DevelopmentConfig(Config):
    """Development configuration"""
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'DEBUG').upper()


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    RATE_LIMIT_ENABLED = False
    VALHALLA_MIN_INTERVAL_SECONDS = 0.0


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


def get_config(name=None):
    """Resolve a config class by name, falling back to FLASK_ENV then 'default'."""
    return config.get(name or os.getenv('FLASK_ENV', 'default'), config['default'])
