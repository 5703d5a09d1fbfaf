"""
Shopify Profit Pipeline
Centralized Configuration Management

Pydantic settings with environment variable support, validation, and type
safety. Each concern gets its own settings class with its own env prefix.
"""

from functools import lru_cache
from typing import Optional
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Tenant store database configuration"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="profit_pipeline", description="Database name")
    user: str = Field(default="profit", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    echo: bool = Field(default=False, description="Echo SQL queries")
    url: Optional[str] = Field(
        default=None,
        alias="DATABASE_URL",
        description="Full SQLAlchemy URL (overrides host/port/db)",
    )

    @property
    def async_url(self) -> str:
        """Async database URL - uses DATABASE_URL if set, otherwise asyncpg"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class ShopifySettings(BaseSettings):
    """Shopify Admin REST API client configuration"""

    model_config = SettingsConfigDict(env_prefix="SHOPIFY_")

    api_version: str = Field(default="2024-07", description="Admin API version")
    page_size: int = Field(default=250, ge=1, le=250, description="Records per page (Shopify max is 250)")
    request_timeout_seconds: float = Field(default=30.0, description="HTTP request timeout")
    page_timeout_seconds: float = Field(default=60.0, description="Timeout for one page fetch")
    max_retries: int = Field(default=3, ge=0, description="Retries per page on transient errors")
    retry_backoff_seconds: float = Field(default=1.0, description="Initial retry backoff")
    retry_backoff_max_seconds: float = Field(default=30.0, description="Backoff ceiling")
    rate_limit_delay_seconds: float = Field(default=0.5, description="Minimum spacing between requests")


class PipelineSettings(BaseSettings):
    """Ingestion and metrics job configuration"""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")

    ingestion_deadline_seconds: float = Field(
        default=4 * 3600,
        description="Overall deadline for one tenant's historical sync",
    )
    metrics_concurrency: int = Field(default=8, ge=1, description="Records processed in flight per metrics job")
    metrics_progress_every: int = Field(default=100, ge=1, description="Log progress every N records")

    # Customer segmentation
    vip_spend_threshold: float = Field(default=1000.0, description="Total spend above which a customer is VIP")
    active_days: int = Field(default=30, description="Max days since last order for an active customer")
    at_risk_days: int = Field(default=90, description="Max days since last order for an at-risk customer")


class SecuritySettings(BaseSettings):
    """Credential encryption configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    encryption_key: Optional[SecretStr] = Field(
        default=None,
        alias="ENCRYPTION_KEY",
        description="Fernet key used to encrypt access tokens at rest",
    )


class MonitoringSettings(BaseSettings):
    """Logging configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="profit-pipeline", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    shopify: ShopifySettings = Field(default_factory=ShopifySettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
