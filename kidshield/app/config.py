"""Configuration classes for KIDSHIELD application."""

import os


class Config:
    """Base configuration."""

    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key'
    KIDSHIELD_CONFIG_PATH = 'data/config/kidshield.yaml'

    # Overrides the DEBUG/INFO default; optional rotating log file
    KIDSHIELD_LOG_LEVEL = os.environ.get('KIDSHIELD_LOG_LEVEL')
    KIDSHIELD_LOG_FILE = os.environ.get('KIDSHIELD_LOG_FILE')

    # Overrides policy.path from kidshield.yaml
    KIDSHIELD_POLICY_PATH = os.environ.get('KIDSHIELD_POLICY_PATH')
    KIDSHIELD_POLICY_IN_MEMORY = False

    # Shared secret checked before sinkhole start/stop (unset = allow)
    KIDSHIELD_CONTROL_TOKEN = os.environ.get('KIDSHIELD_CONTROL_TOKEN')

    KIDSHIELD_START_DISPATCHER = True
    KIDSHIELD_WATCH_POLICY = True
    KIDSHIELD_SINKHOLE_AUTOSTART = None  # None = follow kidshield.yaml


class DevelopmentConfig(Config):
    """Development configuration."""

    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    """Testing configuration."""

    DEBUG = False
    TESTING = True

    KIDSHIELD_POLICY_IN_MEMORY = True
    KIDSHIELD_LOG_FILE = None
    KIDSHIELD_CONTROL_TOKEN = None
    KIDSHIELD_START_DISPATCHER = False
    KIDSHIELD_WATCH_POLICY = False
    KIDSHIELD_SINKHOLE_AUTOSTART = False


class ProductionConfig(Config):
    """Production configuration."""

    DEBUG = False
    TESTING = False


config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}
