"""Configuration settings for the ZappyTalk gateway."""

from functools import lru_cache

from pydantic_settings import BaseSettings

LOCAL_ENVIRONMENT = "local"


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Deployment flag. "local" disables identity verification entirely.
    environment: str = "production"

    # Clerk (identity provider)
    clerk_secret_key: str | None = None
    clerk_publishable_key: str | None = None
    clerk_jwt_key: str | None = None  # Optional PEM public key for networkless verification
    clerk_authorized_parties: str | None = None  # Comma-separated azp allow-list
    clerk_api_url: str = "https://api.clerk.com/v1"

    # LiveKit (real-time media platform)
    livekit_api_key: str | None = None
    livekit_api_secret: str | None = None
    livekit_url: str | None = None
    default_agent_name: str = ""

    # Supabase
    supabase_url: str
    supabase_secret_key: str | None = None
    # Legacy key (deprecated)
    supabase_service_role_key: str | None = None

    # Rate limits (slowapi notation)
    dispatch_rate_limit: str = "30/minute"
    signup_rate_limit: str = "20/minute"
    # Comma-separated CIDRs whose X-Forwarded-For header is honored
    trusted_proxy_cidrs: str = "10.0.0.0/8,172.16.0.0/12,192.168.0.0/16,127.0.0.0/8,::1/128"

    # App
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = []
    # Any port on localhost and private network ranges, for device testing
    cors_origin_regex: str = (
        r"^https?://(localhost|127\.0\.0\.1|192\.168\.\d+\.\d+|10\.\d+\.\d+\.\d+"
        r"|172\.(1[6-9]|2\d|3[01])\.\d+\.\d+)(:\d+)?$"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model

    @property
    def is_local(self) -> bool:
        return self.environment.strip().lower() == LOCAL_ENVIRONMENT

    @property
    def authorized_parties(self) -> list[str] | None:
        """Parse the comma-separated allow-list, None when unset."""
        if not self.clerk_authorized_parties:
            return None
        parties = [p.strip() for p in self.clerk_authorized_parties.split(",")]
        return [p for p in parties if p] or None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
