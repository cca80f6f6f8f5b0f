"""Application configuration using Pydantic Settings."""

import re
from datetime import timedelta
from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageProvider(str, Enum):
    GCS = "gcs"
    S3 = "s3"


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: str) -> timedelta:
    """Parse durations such as "1d", "12h", "30m" or a bare number of seconds."""
    match = _DURATION_RE.match(value or "")
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return timedelta(seconds=int(amount) * _DURATION_UNITS[unit])


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "Fix It by Threalty"
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        validation_alias=AliasChoices("NODE_ENV", "ENVIRONMENT"),
    )
    debug: bool = False
    port: int = 5000
    api_prefix: str = "/api"
    frontend_url: str = "http://localhost:5173"
    allowed_origins: str = "http://localhost:5173"

    # Database
    database_url: str
    db_timeout_seconds: int = 10

    # Session tokens
    jwt_secret: Optional[str] = None
    jwt_key_id: str = "v1"
    jwt_previous_secret: Optional[str] = None
    jwt_previous_key_id: Optional[str] = None
    jwt_expires_in: str = "1d"

    # Federated login (Google via Firebase). Disabled when project id is unset.
    firebase_project_id: Optional[str] = None
    google_application_credentials: Optional[str] = None

    # Storage
    storage_provider: StorageProvider = StorageProvider.GCS
    gcs_bucket_name: Optional[str] = None
    gcs_project_id: Optional[str] = None
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_region: Optional[str] = "us-east-1"
    s3_bucket_name: Optional[str] = None
    presign_ttl_seconds: int = 3600
    max_upload_size_mb: int = 50
    upload_timeout_seconds: int = 60

    # Mail
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    mail_from: str = "no-reply@threalty.com"
    mail_timeout_seconds: int = 30

    # SMS
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    sms_sender_id: Optional[str] = None

    # Rate limiting
    rate_limit_window_minutes: int = 15
    rate_limit_max_requests: int = 100

    # Scheduler
    scheduler_enabled: bool = True
    scheduler_tick_seconds: int = 60
    reminder_sweep_minutes: int = 60
    reminder_threshold_hours: int = 72
    scheduler_batch_size: int = 50
    scheduler_lease_seconds: int = 120
    outbox_batch_size: int = 25

    # Public links
    public_link_default_days: int = 7
    public_link_max_days: int = 30

    # Invitations
    invite_expiry_hours: int = 72

    app_timezone: str = "Africa/Nairobi"

    # Logging
    log_level: str = "INFO"
    sql_log_level: str = "WARNING"

    @property
    def bucket_name(self) -> str:
        """Get the appropriate bucket name based on storage provider."""
        if self.storage_provider == StorageProvider.GCS:
            if not self.gcs_bucket_name:
                raise ValueError("GCS_BUCKET_NAME required when STORAGE_PROVIDER=gcs")
            return self.gcs_bucket_name
        else:
            if not self.s3_bucket_name:
                raise ValueError("S3_BUCKET_NAME required when STORAGE_PROVIDER=s3")
            return self.s3_bucket_name

    @property
    def is_strict(self) -> bool:
        """Staging and production refuse to start on weak configuration."""
        return self.environment in (Environment.STAGING, Environment.PRODUCTION)

    @property
    def jwt_lifetime(self) -> timedelta:
        return parse_duration(self.jwt_expires_in)

    @property
    def federated_login_enabled(self) -> bool:
        return bool(self.firebase_project_id)

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
