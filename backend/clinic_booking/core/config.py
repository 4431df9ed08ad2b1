# backend/clinic_booking/core/config.py
import logging
import os
from datetime import time
from pathlib import Path
from typing import Literal, Optional, Set

from dotenv import load_dotenv
from pydantic import Field, SecretStr, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


NON_PROD_SITE_MODES: Set[str] = {
    "local",
    "dev",
    "development",
    "stg",
    "stage",
    "staging",
    "preview",
}
PROD_SITE_MODES: Set[str] = {"prod", "production", "live"}


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


def _classify_site_mode(raw_site_mode: str | None) -> tuple[str, bool, bool]:
    """Return normalized site mode with production/non-prod classification."""

    normalized = (raw_site_mode or "").strip().lower()
    is_prod = normalized in PROD_SITE_MODES
    is_non_prod = normalized in NON_PROD_SITE_MODES
    return normalized, is_prod, is_non_prod


class Settings(BaseSettings):
    # Environment (derived from SITE_MODE)
    environment: str = (
        "production" if _classify_site_mode(os.getenv("SITE_MODE", "local"))[1] else "development"
    )
    is_testing: bool = False  # Set to True when running tests

    # Persistence gateway
    database_url: str = Field(
        default="sqlite:///./clinic_booking.db",
        alias="DATABASE_URL",
        description="SQLAlchemy URL of the system of record",
    )
    database_pool_size: int = Field(default=10, alias="DATABASE_POOL_SIZE")
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")

    # Clinic calendar
    clinic_timezone: str = Field(
        default="Asia/Ho_Chi_Minh",
        alias="CLINIC_TIMEZONE",
        description="Timezone appointment dates and slots are expressed in",
    )
    slot_minutes: int = Field(default=30, alias="SLOT_MINUTES")
    weekday_open: time = Field(default=time(16, 0), alias="WEEKDAY_OPEN")
    weekday_close: time = Field(default=time(19, 0), alias="WEEKDAY_CLOSE")
    weekend_open: time = Field(default=time(9, 0), alias="WEEKEND_OPEN")
    weekend_close: time = Field(default=time(17, 0), alias="WEEKEND_CLOSE")
    weekend_break_start: Optional[time] = Field(default=time(12, 0), alias="WEEKEND_BREAK_START")
    weekend_break_end: Optional[time] = Field(default=time(13, 0), alias="WEEKEND_BREAK_END")
    advance_booking_days: int = Field(default=30, alias="ADVANCE_BOOKING_DAYS")

    # Reservations
    reservation_ttl_seconds: int = Field(default=300, alias="RESERVATION_TTL_SECONDS")
    reservation_backend: Literal["database", "redis"] = Field(
        default="database",
        alias="RESERVATION_BACKEND",
        description="Where advisory slot reservations are stored",
    )

    # Booking lifecycle policy
    initial_booking_status: Literal["pending", "confirmed"] = Field(
        default="confirmed",
        alias="INITIAL_BOOKING_STATUS",
        description="Status assigned to a booking when it is created",
    )
    auto_confirm_after_minutes: int = Field(default=10, alias="AUTO_CONFIRM_AFTER_MINUTES")
    cancellation_notice_hours: int = Field(
        default=0,
        alias="CANCELLATION_NOTICE_HOURS",
        description="Minimum hours before the appointment a subject may cancel (0 disables)",
    )

    # Conflict resolution
    max_alternatives: int = Field(default=5, alias="MAX_ALTERNATIVES")
    alternative_lookahead_days: int = Field(default=7, alias="ALTERNATIVE_LOOKAHEAD_DAYS")
    booking_retry_max_attempts: int = Field(default=3, alias="BOOKING_RETRY_MAX_ATTEMPTS")
    booking_retry_base_delay: float = Field(default=0.1, alias="BOOKING_RETRY_BASE_DELAY")

    # No-show reconciliation
    no_show_grace_minutes: int = Field(default=60, alias="NO_SHOW_GRACE_MINUTES")
    no_show_sweep_interval_minutes: int = Field(default=60, alias="NO_SHOW_SWEEP_INTERVAL_MINUTES")
    no_show_sweep_batch_size: int = Field(default=500, alias="NO_SHOW_SWEEP_BATCH_SIZE")

    # Check-in tokens
    checkin_token_validity_hours: int = Field(default=24, alias="CHECKIN_TOKEN_VALIDITY_HOURS")
    checkin_token_clock_skew_seconds: int = Field(
        default=120, alias="CHECKIN_TOKEN_CLOCK_SKEW_SECONDS"
    )
    checkin_token_signing_key: Optional[SecretStr] = Field(
        default=None,
        alias="CHECKIN_TOKEN_SIGNING_KEY",
        description="HMAC key used to sign check-in tokens",
    )
    checkin_token_encryption_key: Optional[str] = Field(
        default=None,
        alias="CHECKIN_TOKEN_ENCRYPTION_KEY",
        description="urlsafe base64 encoded 32-byte AES-GCM key for check-in tokens",
    )

    # Staff surface and collaborators
    admin_api_key: Optional[SecretStr] = Field(default=None, alias="ADMIN_API_KEY")
    notification_webhook_url: Optional[str] = Field(default=None, alias="NOTIFICATION_WEBHOOK_URL")
    notification_timeout_seconds: float = Field(default=5.0, alias="NOTIFICATION_TIMEOUT_SECONDS")
    deferred_queue_enabled: bool = Field(default=False, alias="DEFERRED_QUEUE_ENABLED")
    deferred_queue_key: str = Field(default="clinic:deferred_submissions", alias="DEFERRED_QUEUE_KEY")

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator(
        "slot_minutes",
        "reservation_ttl_seconds",
        "booking_retry_max_attempts",
        "checkin_token_validity_hours",
        "no_show_sweep_interval_minutes",
        "no_show_sweep_batch_size",
    )
    @classmethod
    def _require_positive(cls, value: int, info: ValidationInfo) -> int:
        if value <= 0:
            raise ValueError(f"{info.field_name} must be positive, got {value}")
        return value

    @field_validator(
        "advance_booking_days",
        "cancellation_notice_hours",
        "max_alternatives",
        "alternative_lookahead_days",
        "no_show_grace_minutes",
        "auto_confirm_after_minutes",
        "checkin_token_clock_skew_seconds",
    )
    @classmethod
    def _require_non_negative(cls, value: int, info: ValidationInfo) -> int:
        if value < 0:
            raise ValueError(f"{info.field_name} must not be negative, got {value}")
        return value

    @field_validator("slot_minutes")
    @classmethod
    def _slot_divides_day(cls, value: int) -> int:
        if (24 * 60) % value != 0:
            raise ValueError("slot_minutes must divide a day evenly")
        return value

    @field_validator("checkin_token_encryption_key")
    @classmethod
    def _validate_encryption_key(cls, value: str | None) -> str | None:
        if value is None or value == "":
            return None
        # Import here to avoid circular dependency
        from .crypto import validate_aes_key

        validate_aes_key(value, "CHECKIN_TOKEN_ENCRYPTION_KEY")
        return value

    @model_validator(mode="after")
    def _require_secrets_in_prod(self) -> "Settings":
        """Ensure check-in token keys and the staff key are configured when running in production."""

        if self.environment != "production":
            return self
        signing = self.checkin_token_signing_key
        if signing is None or not signing.get_secret_value():
            raise ValueError("CHECKIN_TOKEN_SIGNING_KEY must be configured in production")
        if not self.checkin_token_encryption_key:
            raise ValueError("CHECKIN_TOKEN_ENCRYPTION_KEY must be configured in production")
        admin_key = self.admin_api_key
        if admin_key is None or not admin_key.get_secret_value():
            raise ValueError("ADMIN_API_KEY must be configured in production")
        return self

    @model_validator(mode="after")
    def _check_clinic_hours(self) -> "Settings":
        if self.weekday_open >= self.weekday_close:
            raise ValueError("WEEKDAY_OPEN must be earlier than WEEKDAY_CLOSE")
        if self.weekend_open >= self.weekend_close:
            raise ValueError("WEEKEND_OPEN must be earlier than WEEKEND_CLOSE")
        if (self.weekend_break_start is None) != (self.weekend_break_end is None):
            raise ValueError("WEEKEND_BREAK_START and WEEKEND_BREAK_END must be set together")
        return self

    def get_database_url(self) -> str:
        """Get the database URL, preferring TEST_DATABASE_URL during test runs."""
        if self.is_testing or is_running_tests():
            test_url = os.getenv("TEST_DATABASE_URL")
            if test_url:
                return test_url
        return self.database_url


settings = Settings()
