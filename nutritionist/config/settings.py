"""
Application Settings

One BaseSettings class per subsystem, each reading its own environment
variable prefix, aggregated by `Settings`. Secrets are SecretStr so they
never end up in logs or reprs.
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENVIRONMENTS = ("development", "staging", "production", "testing")


class DatabaseSettings(BaseSettings):
    """POSTGRES_* variables, or a full POSTGRES_URL"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_", populate_by_name=True)

    host: str = "localhost"
    port: int = 5432
    db: str = "ai_nutritionist"
    user: str = "nutritionist"
    password: SecretStr = SecretStr("nutritionist")
    url: Optional[str] = Field(default=None, description="SQLAlchemy async URL, wins over host/port/db")
    echo: bool = Field(default=False, description="Log every SQL statement")

    @property
    def async_url(self) -> str:
        if self.url:
            return self.url
        credentials = f"{self.user}:{self.password.get_secret_value()}"
        return f"postgresql+asyncpg://{credentials}@{self.host}:{self.port}/{self.db}"


class RedisSettings(BaseSettings):
    """Optional cache; the API runs uncached when disabled or down"""

    model_config = SettingsConfigDict(env_prefix="REDIS_", populate_by_name=True)

    enabled: bool = True
    url: Optional[str] = Field(default=None, alias="REDIS_URL")
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[SecretStr] = None
    max_connections: int = 20
    socket_timeout: int = Field(default=2, description="Seconds before a cache call gives up")

    stats_ttl_seconds: int = Field(default=60, description="Dashboard aggregates")
    products_ttl_seconds: int = Field(default=4 * 3600, description="Prefetched product catalogue")

    def get_url(self) -> str:
        if self.url:
            return self.url
        auth = f":{self.password.get_secret_value()}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


class ShopifySettings(BaseSettings):
    """Storefront and Admin API access plus webhook and app proxy secrets"""

    model_config = SettingsConfigDict(env_prefix="SHOPIFY_", populate_by_name=True)

    store_domain: Optional[str] = Field(default=None, description="mystore.myshopify.com")
    storefront_token: Optional[SecretStr] = None
    storefront_api_version: str = "2023-10"
    admin_access_token: Optional[SecretStr] = None
    admin_api_version: str = "2024-01"
    webhook_secret: Optional[SecretStr] = Field(default=None, description="Required outside development")
    app_proxy_secret: Optional[SecretStr] = None
    shop_url: str = Field(default="https://vigaia.com", description="Public storefront, used for cart links")
    request_timeout: float = 15.0

    @property
    def is_storefront_configured(self) -> bool:
        return bool(self.store_domain and self.storefront_token)

    @property
    def is_admin_configured(self) -> bool:
        return bool(self.store_domain and self.admin_access_token)


class StorageSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    temp_dir: Path = Field(default=Path("/tmp/ai-nutritionist"), description="Generated plans served under /api/temp")


class SecuritySettings(BaseSettings):
    """Admin login, rate limiting and CORS"""

    model_config = SettingsConfigDict(env_prefix="", populate_by_name=True)

    admin_password: SecretStr = Field(default=SecretStr("admin123"), alias="ADMIN_PASSWORD")
    admin_session_hours: int = Field(default=24, alias="ADMIN_SESSION_HOURS")

    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    rate_limit_requests: int = Field(default=100, alias="RATE_LIMIT_REQUESTS")
    rate_limit_window_seconds: int = Field(default=60, alias="RATE_LIMIT_WINDOW_SECONDS")
    trusted_proxies: List[str] = Field(
        default_factory=list,
        alias="TRUSTED_PROXIES",
        description="Peers whose X-Forwarded-For is believed, e.g. the load balancer",
    )

    cors_origins: List[str] = Field(default=["http://localhost:3000"], alias="CORS_ORIGINS")


class MonitoringSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="", populate_by_name=True)

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="json or console")


class Settings(BaseSettings):
    """
    Root settings, read from the environment and an optional `.env` file.

    Example:
        settings = get_settings()
        if settings.shopify.is_storefront_configured:
            ...
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    app_name: str = Field(default="ai-nutritionist", alias="APP_NAME")
    app_env: str = Field(default="development", alias="APP_ENV")
    debug: bool = Field(default=False, alias="DEBUG")
    version: str = "1.0.0"

    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    shopify: ShopifySettings = Field(default_factory=ShopifySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        v = v.lower()
        if v not in ENVIRONMENTS:
            raise ValueError(f"APP_ENV must be one of: {', '.join(ENVIRONMENTS)}")
        return v

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Settings loaded once per process.

    Also the FastAPI dependency for settings, so tests override it with
    `app.dependency_overrides[get_settings]`.
    """
    return Settings()
