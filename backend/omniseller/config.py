from pydantic_settings import BaseSettings
from typing import List
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Process configuration.

    Constructed once by the application factory and handed to the repository,
    the token manager, the API client and the sync service. Nothing in the
    package reads configuration from a module-level instance.
    """

    DATABASE_URL: str = "sqlite:///./omniseller.db"

    # Key material for encrypting marketplace tokens at rest (HKDF-derived).
    SECRET_KEY: str = "your-secret-key-change-in-production"
    DEBUG: bool = False

    # TikTok Shop endpoints. The API base URL is only a fallback: each
    # seller's MarketplaceConfig may carry its own api_base_url.
    TIKTOK_AUTH_BASE_URL: str = "https://auth.tiktok-shops.com"
    TIKTOK_AUTHORIZE_URL: str = "https://services.tiktokshop.com/open/authorize"
    TIKTOK_API_BASE_URL: str = "https://open-api.tiktokglobalshop.com"
    TIKTOK_API_VERSION: str = "202309"

    # Outbound HTTP behaviour
    HTTP_TIMEOUT_SECONDS: float = 30.0
    # Extra attempts on transport failures only; envelope errors are never retried.
    API_MAX_RETRIES: int = 0

    # Fan-out
    SYNC_CONCURRENCY: int = 4
    SYNC_PAGE_SIZE: int = 20

    ALLOWED_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    class Config:
        env_file = None
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def allowed_origins(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def token_url(self) -> str:
        return f"{self.TIKTOK_AUTH_BASE_URL.rstrip('/')}/api/v2/token/get"

    @property
    def refresh_token_url(self) -> str:
        return f"{self.TIKTOK_AUTH_BASE_URL.rstrip('/')}/api/v2/token/refresh"
