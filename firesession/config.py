"""Application configuration."""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# HS256 keys shorter than this make every session token forgeable
MIN_SIGNING_KEY_BYTES = 32


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
    app_name: str = Field(default="Firesession API", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")
    app_url: str = Field(default="http://localhost:3000", alias="APP_URL")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Database
    database_url: str = Field(..., alias="DATABASE_URL")
    store_timeout_seconds: float = Field(default=5.0, alias="STORE_TIMEOUT_SECONDS")

    # Redis
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_username: str = Field(default="default", alias="REDIS_USERNAME")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")
    redis_decode_responses: bool = Field(default=True, alias="REDIS_DECODE_RESPONSES")

    # Session tokens
    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    jwt_issuer: str = Field(default="firesession", alias="JWT_ISSUER")
    jwt_audience: str = Field(default="firesession-users", alias="JWT_AUDIENCE")
    session_expire_days: int = Field(default=7, alias="SESSION_EXPIRE_DAYS")
    session_cookie_name: str = Field(default="app_session", alias="SESSION_COOKIE_NAME")

    # Password reset
    reset_token_expire_minutes: int = Field(default=60, alias="RESET_TOKEN_EXPIRE_MINUTES")
    reset_requests_per_hour: int = Field(default=5, alias="RESET_REQUESTS_PER_HOUR")
    reset_min_response_ms: int = Field(default=1500, alias="RESET_MIN_RESPONSE_MS")

    # Firebase
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
    firebase_check_revoked: bool = Field(default=False, alias="FIREBASE_CHECK_REVOKED")
    upstream_timeout_seconds: float = Field(default=10.0, alias="UPSTREAM_TIMEOUT_SECONDS")

    # Email
    smtp_host: str | None = Field(default=None, alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    smtp_user: str | None = Field(default=None, alias="SMTP_USER")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASSWORD")
    smtp_use_tls: bool = Field(default=True, alias="SMTP_USE_TLS")
    smtp_timeout_seconds: float = Field(default=30.0, alias="SMTP_TIMEOUT_SECONDS")
    email_from: str | None = Field(default=None, alias="EMAIL_FROM")
    email_from_name: str = Field(default="Firesession", alias="EMAIL_FROM_NAME")

    # Admin endpoints
    admin_secret: str = Field(
        default="test-admin-secret-for-development-only",
        alias="ADMIN_SECRET",
        description="Shared secret for the admin maintenance endpoints",
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

    @field_validator("jwt_secret_key")
    @classmethod
    def _check_signing_key_length(cls, value: str) -> str:
        if len(value.encode("utf-8")) < MIN_SIGNING_KEY_BYTES:
            raise ValueError(f"JWT_SECRET_KEY must be at least {MIN_SIGNING_KEY_BYTES} bytes long")
        return value

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()
