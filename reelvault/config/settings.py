"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables (or a local .env)
with sensible defaults. Using Pydantic's BaseSettings means we get:
- Type validation at startup (fail fast if config is wrong)
- Documentation of what's required vs optional
- Easy testing with different configurations

Store credentials are deliberately not validated at load time. A
missing credential must not stop the process from starting; instead
every gateway request answers with a configuration error until it is
fixed (see ``store_config``).
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.errors import ConfigurationError
from ..infrastructure.storage.gateway import StoreConfig


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For lists (like api_keys), use comma-separated values in env.
    """

    # API Configuration
    api_title: str = "ReelVault Storage API"
    api_version: str = "v1"
    api_keys: str = Field(
        default="dev-key-1,dev-key-2",
        description="Comma-separated API keys. Using a list enables key rotation without downtime."
    )

    # R2 Storage Configuration
    r2_account_id: str = Field(
        default="",
        description="Cloudflare account ID for R2"
    )
    r2_access_key_id: str = Field(
        default="",
        description="R2 access key ID"
    )
    r2_secret_access_key: str = Field(
        default="",
        description="R2 secret access key. Never leaves the gateway process."
    )
    r2_bucket_name: str = Field(
        default="",
        description="R2 bucket holding uploaded videos"
    )
    r2_storage_domain: str = Field(
        default="r2.cloudflarestorage.com",
        description="Store domain; the bucket host is {bucket}.{account}.{domain}"
    )
    r2_put_url_expiry_seconds: int = Field(
        default=3600,
        ge=60,
        le=604800,
        description="Lifetime of presigned upload URLs"
    )
    r2_get_url_expiry_seconds: int = Field(
        default=3600,
        ge=60,
        le=604800,
        description="Lifetime of presigned playback URLs handed out after uploads"
    )
    r2_request_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for server-to-store calls (initiate/complete/abort)"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:5173,http://localhost:3000",
        description="Comma-separated list of allowed CORS origins. Use * for development only."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def api_keys_list(self) -> list[str]:
        """Parse comma-separated API keys into a list."""
        return [key.strip() for key in self.api_keys.split(",") if key.strip()]

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def validate_required_fields(self) -> list[str]:
        """
        Return the environment variables that must be set but aren't.

        Used at startup for logging and by the readiness check.
        """
        missing = []
        if not self.r2_account_id:
            missing.append("R2_ACCOUNT_ID")
        if not self.r2_access_key_id:
            missing.append("R2_ACCESS_KEY_ID")
        if not self.r2_secret_access_key:
            missing.append("R2_SECRET_ACCESS_KEY")
        if not self.r2_bucket_name:
            missing.append("R2_BUCKET_NAME")
        return missing

    def store_config(self) -> StoreConfig:
        """
        Build the explicit store configuration for the gateway.

        Raises ConfigurationError naming the missing variables.
        """
        missing = self.validate_required_fields()
        if missing:
            raise ConfigurationError(
                f"R2 credentials not configured: missing {', '.join(missing)}",
                missing=missing,
            )

        return StoreConfig(
            account_id=self.r2_account_id,
            access_key_id=self.r2_access_key_id,
            secret_access_key=self.r2_secret_access_key,
            bucket_name=self.r2_bucket_name,
            storage_domain=self.r2_storage_domain,
            put_url_expiry=self.r2_put_url_expiry_seconds,
            get_url_expiry=self.r2_get_url_expiry_seconds,
            request_timeout=self.r2_request_timeout_seconds,
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache means we only load settings once per process.
    This is safe because settings don't change during runtime.
    For tests, you can call get_settings.cache_clear() to reset.
    """
    return Settings()
