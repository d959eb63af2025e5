"""
Centralized configuration management with strict validation
"""

from functools import lru_cache
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.exceptions import ConfigurationError
from utils.social_settings import SocialMediaSettings, get_social_media_settings


class ProviderCredentials(BaseModel):
    """OAuth client registration for one provider"""
    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: str
    redirect_uri: str
    scopes: Tuple[str, ...] = ()


class Config(BaseSettings):
    """Application configuration, immutable once built"""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )

    # Application
    environment: str = "development"
    log_level: str = "INFO"
    public_base_url: str = "http://localhost:8000"

    # Database
    database_url: str = "sqlite+aiosqlite:///./socialflow.db"

    # Security
    encryption_key: Optional[str] = None
    state_secret: Optional[str] = None
    auth_jwt_secret: Optional[str] = None

    # Facebook
    facebook_app_id: Optional[str] = None
    facebook_app_secret: Optional[str] = None
    facebook_redirect_uri: Optional[str] = None

    # Instagram
    instagram_app_id: Optional[str] = None
    instagram_app_secret: Optional[str] = None
    instagram_redirect_uri: Optional[str] = None

    # Twitter
    twitter_api_key: Optional[str] = None
    twitter_api_secret: Optional[str] = None
    twitter_redirect_uri: Optional[str] = None

    # TikTok
    tiktok_client_key: Optional[str] = None
    tiktok_client_secret: Optional[str] = None
    tiktok_redirect_uri: Optional[str] = None
    tiktok_privacy_level: str = "SELF_ONLY"

    # Media relay
    media_storage_backend: str = "local"
    media_local_dir: str = "./media"
    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    supabase_bucket: str = "media"

    # Provider HTTP
    http_timeout: float = 30.0
    http_max_retries: int = 3
    http_retry_backoff: float = 1.0

    # Publishing
    twitter_chunk_size: int = 1024 * 1024
    twitter_chunk_delay: float = 0.1
    twitter_max_processing_wait: float = 300.0
    instagram_poll_attempts: int = 10
    instagram_poll_interval: float = 3.0
    max_concurrent_publishes: int = 4

    # OAuth lifetimes
    pending_request_ttl: int = 600
    csrf_state_ttl: int = 600
    token_refresh_window_days: int = 7

    social: SocialMediaSettings = Field(default_factory=get_social_media_settings)

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        if v not in ['development', 'test', 'staging', 'production']:
            raise ValueError("ENVIRONMENT must be one of: development, test, staging, production")
        return v

    @field_validator('media_storage_backend')
    @classmethod
    def validate_media_backend(cls, v):
        if v not in ['local', 'supabase']:
            raise ValueError("MEDIA_STORAGE_BACKEND must be 'local' or 'supabase'")
        return v

    @field_validator('twitter_chunk_size', 'instagram_poll_attempts', 'max_concurrent_publishes')
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    def _credential_fields(self) -> Dict[str, Tuple[str, str, str]]:
        return {
            "FACEBOOK": ("facebook_app_id", "facebook_app_secret", "facebook_redirect_uri"),
            "INSTAGRAM": ("instagram_app_id", "instagram_app_secret", "instagram_redirect_uri"),
            "TWITTER": ("twitter_api_key", "twitter_api_secret", "twitter_redirect_uri"),
            "TIKTOK": ("tiktok_client_key", "tiktok_client_secret", "tiktok_redirect_uri"),
        }

    def provider_credentials(self, provider) -> ProviderCredentials:
        """Return the provider's client registration or fail naming what is missing"""
        name = str(getattr(provider, "value", provider)).upper()
        fields = self._credential_fields().get(name)
        if fields is None:
            raise ConfigurationError(f"No configuration known for provider {name}")

        missing: List[str] = [field.upper() for field in fields if not getattr(self, field)]
        if missing:
            raise ConfigurationError(
                f"Missing {name} configuration: {', '.join(missing)}",
                {"provider": name, "missing": missing}
            )

        client_id, client_secret, redirect_uri = (getattr(self, field) for field in fields)
        return ProviderCredentials(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
            scopes=tuple(self.social.for_provider(name).default_scopes),
        )

    @property
    def state_signing_secret(self) -> Optional[str]:
        return self.state_secret or self.encryption_key


@lru_cache()
def get_config() -> Config:
    """Get cached configuration instance"""
    try:
        return Config()
    except Exception as e:
        raise ConfigurationError(f"Configuration validation failed: {str(e)}")
