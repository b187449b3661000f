"""
Kiné Maintenance Configuration Package
======================================

Designates the config directory as a package so the rest of the worker can use
absolute imports such as `from config.settings import DATABASE_URI`.
"""

from .settings import (
    APP_NAME,
    APP_VERSION,
    DATABASE_URI,
    SCHEDULER_TIMEZONE,
    IS_PRODUCTION,
    IS_DEVELOPMENT,
    DEBUG_MODE,
    validate_configuration,
    print_config_summary,
)

__version__ = APP_VERSION
