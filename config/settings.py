"""
Kiné Maintenance Configuration Settings
======================================

This module is the centralized configuration hub for the maintenance worker.
It reads every environment variable, secret and tunable used by the scheduled
jobs, keeping configuration separate from code.

Core Responsibilities:
- Load and validate environment variables
- Centralize storage credentials and database settings
- Define job timings, retention windows and batch sizes
"""

import os
from typing import Optional


# =============================================================================
# Environment Variable Loading Helper
# =============================================================================

def get_env_var(key: str, default: Optional[str] = None, required: bool = False) -> str:
    """
    Safely retrieve environment variables with validation.

    Args:
        key: Environment variable name
        default: Default value if not found
        required: Whether this variable is required for app to function

    Returns:
        Environment variable value as string

    Raises:
        ValueError: If required variable is missing
    """
    value = os.getenv(key, default)

    if required and not value:
        raise ValueError(f"Required environment variable '{key}' is not set")

    return value


# =============================================================================
# Database Configuration
# =============================================================================

# PostgreSQL in production; a local SQLite file keeps development usable
DATABASE_URI = get_env_var("DATABASE_URL", "sqlite:///kine_maintenance.db")

# Database connection pool settings
DB_POOL_SIZE = int(get_env_var("DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW = int(get_env_var("DB_MAX_OVERFLOW", "10"))
DB_POOL_RECYCLE_SECONDS = int(get_env_var("DB_POOL_RECYCLE", "3600"))
DB_CONNECT_TIMEOUT = int(get_env_var("DB_CONNECT_TIMEOUT", "10"))
# Server-side cap on a single statement (PostgreSQL only), in milliseconds
DB_STATEMENT_TIMEOUT_MS = int(get_env_var("DB_STATEMENT_TIMEOUT_MS", "60000"))


# =============================================================================
# Object Storage Configuration (exercise animations)
# =============================================================================

AWS_ACCESS_KEY_ID = get_env_var("AWS_ACCESS_KEY_ID")
AWS_SECRET_ACCESS_KEY = get_env_var("AWS_SECRET_ACCESS_KEY")
AWS_REGION = get_env_var("AWS_REGION", "eu-west-3")
AWS_S3_BUCKET_NAME = get_env_var("AWS_S3_BUCKET_NAME", "monassistantkine")

# Optional custom endpoint (MinIO, GCS interoperability, localstack)
AWS_S3_ENDPOINT_URL = get_env_var("AWS_S3_ENDPOINT_URL")

# Where exercise animations live inside the bucket
EXERCISE_ASSETS_PREFIX = get_env_var("EXERCISE_ASSETS_PREFIX", "exercices/")
EXERCISE_ASSET_SUFFIX = get_env_var("EXERCISE_ASSET_SUFFIX", ".gif")


# =============================================================================
# Background Job Configuration
# =============================================================================

# All cron expressions are evaluated in this timezone
SCHEDULER_TIMEZONE = get_env_var("SCHEDULER_TIMEZONE", "Europe/Paris")

# Retry / requeue policy
JOB_RETRY_DELAY_SECONDS = int(get_env_var("JOB_RETRY_DELAY_SECONDS", "30"))
JOB_REQUEUE_MINUTES = int(get_env_var("JOB_REQUEUE_MINUTES", "10"))

# Per-job timeouts for scheduled runs (seconds)
NOTIFICATIONS_TIMEOUT_SECONDS = int(get_env_var("NOTIFICATIONS_TIMEOUT", "90"))
ARCHIVE_TIMEOUT_SECONDS = int(get_env_var("ARCHIVE_TIMEOUT", "90"))
PURGE_TIMEOUT_SECONDS = int(get_env_var("PURGE_TIMEOUT", "120"))
ORPHAN_ASSETS_TIMEOUT_SECONDS = int(get_env_var("ORPHAN_ASSETS_TIMEOUT", "120"))
KINE_CHAT_CLEANUP_TIMEOUT_SECONDS = int(get_env_var("KINE_CHAT_CLEANUP_TIMEOUT", "90"))

# Timeouts used by the manual test entry points (seconds)
MANUAL_SHORT_TIMEOUT_SECONDS = int(get_env_var("MANUAL_SHORT_TIMEOUT", "60"))
MANUAL_LONG_TIMEOUT_SECONDS = int(get_env_var("MANUAL_LONG_TIMEOUT", "180"))

# Batch and retention settings
PROGRAMME_BATCH_SIZE = int(get_env_var("PROGRAMME_BATCH_SIZE", "100"))
ARCHIVE_RETENTION_MONTHS = int(get_env_var("ARCHIVE_RETENTION_MONTHS", "6"))
ORPHAN_GRACE_HOURS = int(get_env_var("ORPHAN_GRACE_HOURS", "24"))
KINE_CHAT_RETENTION_DAYS = int(get_env_var("KINE_CHAT_RETENTION_DAYS", "5"))

# Turn the scheduler off without removing the worker process
SCHEDULER_ENABLED = get_env_var("SCHEDULER_ENABLED", "true").lower() == "true"


# =============================================================================
# Logging & Environment
# =============================================================================

LOG_LEVEL = get_env_var("LOG_LEVEL", "INFO").upper()
DEBUG_MODE = get_env_var("DEBUG_MODE", "false").lower() == "true"

ENVIRONMENT = get_env_var("ENVIRONMENT", "development").lower()
IS_PRODUCTION = ENVIRONMENT == "production"
IS_DEVELOPMENT = ENVIRONMENT == "development"

APP_NAME = "kine-maintenance"
APP_VERSION = "1.0.0"

# Flask admin surface
SECRET_KEY = get_env_var("SECRET_KEY", "dev-secret-key")
CORS_ORIGINS = get_env_var("CORS_ORIGINS", "*")

# Shared token required on admin endpoints (X-Admin-Token header)
ADMIN_API_TOKEN = get_env_var("ADMIN_API_TOKEN")


class Config:
    """Flask configuration for the operator surface."""
    SECRET_KEY = SECRET_KEY
    DEBUG = DEBUG_MODE
    JSON_SORT_KEYS = False
    CORS_ORIGINS = CORS_ORIGINS


# =============================================================================
# Validation
# =============================================================================

def validate_configuration():
    """
    Validate critical configuration values on worker startup.

    Raises:
        ValueError: If any critical configuration is invalid
    """
    errors = []

    if not DATABASE_URI.startswith(('postgresql://', 'postgres://', 'postgresql+psycopg2://', 'sqlite://')):
        errors.append("DATABASE_URL must be a PostgreSQL or SQLite connection string")

    if IS_PRODUCTION and DATABASE_URI.startswith('sqlite://'):
        errors.append("DATABASE_URL must point to PostgreSQL in production")

    if IS_PRODUCTION and not all([AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY]):
        errors.append("AWS credentials are required in production")

    if IS_PRODUCTION and not ADMIN_API_TOKEN:
        errors.append("ADMIN_API_TOKEN is required in production")

    if not AWS_S3_BUCKET_NAME:
        errors.append("AWS_S3_BUCKET_NAME must be set")

    if not EXERCISE_ASSETS_PREFIX.endswith('/'):
        errors.append("EXERCISE_ASSETS_PREFIX must end with '/'")

    if JOB_RETRY_DELAY_SECONDS < 0:
        errors.append("JOB_RETRY_DELAY_SECONDS must not be negative")

    for name, value in (
        ("PROGRAMME_BATCH_SIZE", PROGRAMME_BATCH_SIZE),
        ("ARCHIVE_RETENTION_MONTHS", ARCHIVE_RETENTION_MONTHS),
        ("ORPHAN_GRACE_HOURS", ORPHAN_GRACE_HOURS),
        ("KINE_CHAT_RETENTION_DAYS", KINE_CHAT_RETENTION_DAYS),
    ):
        if value <= 0:
            errors.append(f"{name} must be greater than 0")

    if errors:
        raise ValueError("Configuration validation failed:\n" + "\n".join(f"- {error}" for error in errors))


# =============================================================================
# Configuration Summary (for debugging)
# =============================================================================

def print_config_summary():
    """Print a summary of current configuration (hiding sensitive values)."""
    print(f"""
Kiné Maintenance Configuration Summary
======================================
Environment: {ENVIRONMENT}
Version: {APP_VERSION}
Database: {'✓ Configured' if DATABASE_URI else '✗ Not configured'}
Storage bucket: {AWS_S3_BUCKET_NAME} ({AWS_REGION})
Storage credentials: {'✓ Configured' if AWS_ACCESS_KEY_ID else '✗ Not configured'}
Scheduler: {'Enabled' if SCHEDULER_ENABLED else 'Disabled'} ({SCHEDULER_TIMEZONE})
Archive retention: {ARCHIVE_RETENTION_MONTHS} months
Orphan grace period: {ORPHAN_GRACE_HOURS} hours
Debug Mode: {'On' if DEBUG_MODE else 'Off'}
""")


if __name__ == "__main__":
    print_config_summary()
