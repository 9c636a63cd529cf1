"""Application configuration."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="null",
    )

    # Application
    app_name: str = Field(default="Telemed API", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Database
    database_url: str = Field(..., alias="DATABASE_URL")

    # Redis (optional, only needed for the distributed booking lock)
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    booking_lock_backend: Literal["local", "redis"] = Field(
        default="local", alias="BOOKING_LOCK_BACKEND"
    )
    booking_lock_timeout_seconds: int = Field(default=10, alias="BOOKING_LOCK_TIMEOUT_SECONDS")

    # JWT
    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=30, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Firebase (push channel)
    firebase_credentials_path: str | None = Field(
        default=None,
        alias="FIREBASE_CREDENTIALS_PATH",
        description="Path to Firebase service account JSON file",
    )
    firebase_config_json: str | None = Field(
        default=None,
        alias="FIREBASE_CONFIG_JSON",
        description="Raw JSON string of the Firebase service account",
    )

    # SMTP (email channel)
    smtp_host: str = Field(default="smtp.gmail.com", alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    smtp_user: str | None = Field(default=None, alias="SMTP_USER")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASSWORD")
    email_sender_name: str = Field(default="Telemed", alias="EMAIL_SENDER_NAME")

    # Twilio (sms channel)
    twilio_account_sid: str | None = Field(default=None, alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: str | None = Field(default=None, alias="TWILIO_AUTH_TOKEN")
    twilio_phone_number: str | None = Field(default=None, alias="TWILIO_PHONE_NUMBER")

    # Video calls
    video_call_provider: Literal["mock", "jitsi"] = Field(
        default="mock", alias="VIDEO_CALL_PROVIDER"
    )
    jitsi_domain: str = Field(default="meet.jit.si", alias="JITSI_DOMAIN")
    video_app_id: str | None = Field(default=None, alias="VIDEO_APP_ID")
    video_app_secret: str | None = Field(default=None, alias="VIDEO_APP_SECRET")
    video_call_ttl_hours: int = Field(default=24, alias="VIDEO_CALL_TTL_HOURS")
    frontend_url: str = Field(default="http://localhost:3000", alias="FRONTEND_URL")

    # Notifications
    notification_expiry_days: int = Field(default=30, alias="NOTIFICATION_EXPIRY_DAYS")
    reminder_window_hours: int = Field(default=24, alias="REMINDER_WINDOW_HOURS")

    # Admin secret for job and maintenance endpoints
    admin_notification_secret: str = Field(
        default="test-admin-secret-for-development-only",
        alias="ADMIN_NOTIFICATION_SECRET",
        description="Secret key for job and maintenance endpoints",
    )

    # CORS
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        if isinstance(self.cors_origins_str, str):
            return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]
        return [self.cors_origins_str]

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()
