"""
Runtime Environment Validation Module

This module validates the environment at application startup.
In staging and production a failed check refuses to start the service (hard fail).
In development and test, weak settings are tolerated and reported as warnings.
"""

import logging
import os
import secrets
import sys

from pydantic import ValidationError

from fixit.core.config import Environment, Settings, StorageProvider, get_settings

logger = logging.getLogger(__name__)

MIN_JWT_SECRET_BYTES = 32


def _fatal(message: str) -> None:
    print(f"❌ FATAL: {message}", file=sys.stderr)
    sys.exit(1)


def validate_environment() -> Settings:
    """
    Validate required environment variables at startup.

    Must be called before the FastAPI app starts serving requests.

    Returns:
        Settings: Validated settings object

    Raises:
        SystemExit: If validation fails in a strict environment (exit code 1)
    """
    try:
        settings = get_settings()
    except ValidationError as e:
        print("❌ FATAL: Environment validation failed", file=sys.stderr)
        print("\nMissing or invalid environment variables:", file=sys.stderr)
        for error in e.errors():
            field = " -> ".join(str(loc) for loc in error["loc"])
            print(f"   • {field}: {error['msg']}", file=sys.stderr)
        print("\nThe application cannot start with invalid configuration.", file=sys.stderr)
        sys.exit(1)

    # 1. Session signing secret
    secret = settings.jwt_secret or ""
    if len(secret.encode("utf-8")) < MIN_JWT_SECRET_BYTES:
        if settings.is_strict:
            _fatal(f"JWT_SECRET must be set to at least {MIN_JWT_SECRET_BYTES} bytes in {settings.environment.value}")
        logger.warning(
            f"[CONFIG] JWT_SECRET missing or shorter than {MIN_JWT_SECRET_BYTES} bytes; "
            "using a random per-process secret"
        )
        settings.jwt_secret = secrets.token_urlsafe(48)

    if settings.is_strict:
        # 2. CORS: no wildcard outside development
        origins = [o.strip() for o in settings.allowed_origins.split(",")]
        if "*" in origins:
            _fatal("Wildcard CORS origin (*) is not allowed. Set ALLOWED_ORIGINS to specific domains.")

        # 3. Storage provider configuration
        if settings.storage_provider == StorageProvider.GCS:
            if not settings.gcs_bucket_name or not settings.gcs_project_id:
                _fatal("GCS_BUCKET_NAME and GCS_PROJECT_ID required when STORAGE_PROVIDER=gcs")
        elif settings.storage_provider == StorageProvider.S3:
            if not settings.s3_bucket_name or not settings.aws_access_key_id or not settings.aws_secret_access_key:
                _fatal("S3_BUCKET_NAME, AWS_ACCESS_KEY_ID, and AWS_SECRET_ACCESS_KEY required when STORAGE_PROVIDER=s3")

        # 4. Database URL
        if not settings.database_url.startswith("postgresql"):
            _fatal("DATABASE_URL must be a PostgreSQL connection string (postgresql+asyncpg://)")

    # 5. Firebase credentials path exists (if provided)
    if settings.google_application_credentials and not os.path.exists(settings.google_application_credentials):
        if settings.is_strict:
            _fatal(f"Firebase credentials file not found: {settings.google_application_credentials}")
        logger.warning("[CONFIG] GOOGLE_APPLICATION_CREDENTIALS points to a missing file")

    if not settings.federated_login_enabled:
        logger.info("[CONFIG] FIREBASE_PROJECT_ID not set; Google login disabled")

    if settings.environment != Environment.TEST:
        logger.info(
            f"[CONFIG] Environment validation passed: app={settings.app_name} "
            f"env={settings.environment.value} storage={settings.storage_provider.value}"
        )

    return settings


if __name__ == "__main__":
    validate_environment()
    print("\n✅ All environment variables are valid!")
