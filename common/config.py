import os
from functools import lru_cache
from pydantic_settings import BaseSettings
from typing import Optional, List

class Settings(BaseSettings):
    # Database
    database_url: str = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///./crm_oauth.db")
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 30

    # Security
    # No default: the signing secret must always be supplied by the deployment
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    bcrypt_rounds: int = 12

    # Token lifetimes
    access_token_expire_minutes: int = 15
    auth_session_expire_minutes: int = 2
    authorization_code_expire_minutes: int = 5
    oauth_refresh_token_expire_days: int = 7

    # Public origin used in discovery documents. Derived from the request
    # when unset.
    base_url: Optional[str] = os.environ.get("BASE_URL")
    # Honour X-Forwarded-* for origin and client address. Enable only behind
    # a proxy that appends the peer address to X-Forwarded-For.
    trust_proxy_headers: bool = False

    # CORS settings
    cors_origins: List[str] = ["*"]

    # Rate Limiting
    rate_limit_enabled: bool = True

    # Seconds between sweeps of expired codes and refresh tokens (0 disables)
    cleanup_interval_seconds: int = 3600

    # Environment
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

    class Config:
        env_file = ".env"
        extra = "allow"


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings read from the environment (entry point only)."""
    return Settings()
