"""Application settings and configuration.

This module defines all configuration options for the Compyy API.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEV_SECRET_KEY = "dev-secret-key-change-me"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Compyy API", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Public URL of the web frontend, used for links in emails and redirects
    app_url: str = Field(default="http://localhost:3000", alias="APP_URL")
    # Public URL of this API, used for the email confirmation link
    api_url: str = Field(default="http://localhost:8000", alias="API_URL")

    # Security and authentication
    secret_key: str = Field(default=_DEV_SECRET_KEY, alias="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    session_token_expire_seconds: int = Field(
        default=60 * 60 * 24 * 7,
        alias="SESSION_TOKEN_EXPIRE_SECONDS",
    )
    session_cookie_name: str = Field(default="auth-token", alias="SESSION_COOKIE_NAME")
    email_confirm_token_expire_hours: int = Field(
        default=48,
        alias="EMAIL_CONFIRM_TOKEN_EXPIRE_HOURS",
    )
    password_reset_token_expire_minutes: int = Field(
        default=60,
        alias="PASSWORD_RESET_TOKEN_EXPIRE_MINUTES",
    )
    password_min_length: int = Field(default=1, alias="PASSWORD_MIN_LENGTH")
    bcrypt_rounds: int = Field(default=12, alias="BCRYPT_ROUNDS")

    # Database configuration
    database_url: str = Field(default="sqlite:///./compyy.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Rate limiting (fixed windows, per client IP)
    rate_limit_backend: str = Field(default="memory", alias="RATE_LIMIT_BACKEND")
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")
    auth_rate_limit_attempts: int = Field(default=5, alias="AUTH_RATE_LIMIT_ATTEMPTS")
    auth_rate_limit_window_seconds: int = Field(
        default=15 * 60,
        alias="AUTH_RATE_LIMIT_WINDOW_SECONDS",
    )
    password_change_rate_limit_attempts: int = Field(
        default=3,
        alias="PASSWORD_CHANGE_RATE_LIMIT_ATTEMPTS",
    )
    password_change_rate_limit_window_seconds: int = Field(
        default=60 * 60,
        alias="PASSWORD_CHANGE_RATE_LIMIT_WINDOW_SECONDS",
    )

    # Outbound email delivery
    email_provider_url: str = Field(
        default="https://api.resend.com/emails",
        alias="EMAIL_PROVIDER_URL",
    )
    email_api_key: str | None = Field(default=None, alias="EMAIL_API_KEY")
    email_from: str = Field(default="Compyy <noreply@compyy.org>", alias="EMAIL_FROM")
    email_timeout_seconds: float = Field(default=10.0, alias="EMAIL_TIMEOUT_SECONDS")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @model_validator(mode="after")
    def _require_secret_in_production(self) -> "Settings":
        if self.is_production and self.secret_key == _DEV_SECRET_KEY:
            raise ValueError("SECRET_KEY must be set when ENVIRONMENT=production")
        return self

    @property
    def is_production(self) -> bool:
        """Return True when running with production hardening (secure cookies, HSTS)."""
        return self.environment.lower() == "production"

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url


settings = Settings()
