from pydantic_settings import BaseSettings
from typing import Optional
import os
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    SECRET_KEY: str = "your-secret-key-change-in-production"
    JWT_SECRET: Optional[str] = None
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    @property
    def secret_key(self) -> str:
        return self.JWT_SECRET or self.SECRET_KEY

    # PostgreSQL in production; SQLite is accepted for local development and tests.
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./stocksync.db")

    # External order platform (Bling API v3 by default)
    PLATFORM_API_BASE_URL: str = "https://www.bling.com.br/Api/v3"
    PLATFORM_AUTH_URL: str = "https://www.bling.com.br/Api/v3/oauth/authorize"
    PLATFORM_TOKEN_URL: str = "https://www.bling.com.br/Api/v3/oauth/token"

    # When set, used verbatim as the OAuth redirect URI. Otherwise the URI is
    # derived from X-Forwarded-Proto / X-Forwarded-Host of the incoming request.
    PLATFORM_REDIRECT_URI: Optional[str] = None
    PLATFORM_CALLBACK_PATH: str = "/platform/callback"
    DEFAULT_REDIRECT_HOST: str = "localhost:3001"

    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Tokens expiring within this many seconds are refreshed before use.
    TOKEN_EXPIRY_SKEW_SECONDS: int = 60

    OAUTH_STATE_TTL_SECONDS: int = 600
    OAUTH_STATE_SWEEP_SECONDS: int = 60

    # Order pagination. The platform allows ~3 requests/second.
    ORDERS_PAGE_SIZE: int = 100
    ORDERS_MAX_PAGES: int = 10
    PAGE_DELAY_SECONDS: float = 0.4
    RATE_LIMIT_BACKOFF_SECONDS: float = 2.0
    RATE_LIMIT_MAX_RETRIES: int = 5
    TRANSIENT_RETRY_DELAY_SECONDS: float = 1.0
    TRANSIENT_MAX_RETRIES: int = 1
    ENRICH_ORDER_DETAILS: bool = True

    # Persistence batching for order sync
    SYNC_BATCH_SIZE: int = 10
    SYNC_BATCH_TIMEOUT_SECONDS: float = 15.0
    SYNC_RESULT_LIMIT: int = 100

    # Product import
    PRODUCTS_PAGE_SIZE: int = 100
    PRODUCTS_MAX_PAGES: int = 50

    # Names shorter than this are never substring-matched against products.
    FUZZY_MATCH_MIN_LENGTH: int = 3

    AUTO_SYNC_ENABLED: bool = False
    AUTO_SYNC_INTERVAL_SECONDS: int = 1800
    AUTO_SYNC_STARTUP_DELAY_SECONDS: int = 5
    AUTO_SYNC_ACCOUNT_DELAY_SECONDS: float = 1.0
    # Scheduled syncs only list orders placed since this many days ago.
    AUTO_SYNC_LOOKBACK_DAYS: int = 1
    AUTO_SYNC_MAX_PAGES: int = 5

    ALLOWED_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    class Config:
        env_file = None
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def is_postgres(self) -> bool:
        return self.DATABASE_URL.startswith("postgresql")


settings = Settings()
