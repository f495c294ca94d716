"""Application configuration via Pydantic Settings."""

from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global settings loaded from environment variables and ``.env``."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # App
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Proxy pool service
    PROXY_SERVICE_PROTOCOL: str = "http"
    PROXY_SERVICE_HOST: str = "proxy-service"
    PROXY_SERVICE_PORT: int = 7001
    PROXY_SERVICE_TIMEOUT: float = 10.0
    PROXY_SERVICE_MAX_RETRIES: int = 3
    PROXY_SERVICE_CACHE_TTL: int = 60  # seconds
    PROXY_SERVICE_CACHE_ENABLED: bool = True
    PROXY_SERVICE_FALLBACK_ENABLED: bool = True
    PROXY_FALLBACK_LIST: str = ""  # Comma-separated host:port entries

    # Scraping
    SCRAPING_PROXY_ENABLED: bool = True
    SCRAPING_REQUEST_TIMEOUT: float = 30.0
    SCRAPING_CONNECT_TIMEOUT: float = 10.0
    SCRAPING_MAX_ATTEMPTS: int = 3
    SCRAPING_RETRY_DELAY: float = 2.0
    SCRAPING_RATE_LIMITING_ENABLED: bool = True
    SCRAPING_REQUESTS_PER_MINUTE: int = 60
    SCRAPING_AMAZON_ENABLED: bool = True
    SCRAPING_JUMIA_ENABLED: bool = True

    # Rescrape scheduling
    RESCRAPE_BATCH_SIZE: int = 100
    RESCRAPE_MAX_AGE_HOURS: int = 24
    RESCRAPE_INTERVAL_MINUTES: int = 60
    RESCRAPE_CONCURRENCY: int = 5
    RESCRAPE_TASK_TIMEOUT: float = 120.0
    RESCRAPE_TASK_MAX_ATTEMPTS: int = 3
    RESCRAPE_TASK_BACKOFF: float = 60.0

    @property
    def proxy_service_url(self) -> str:
        """Base URL of the proxy pool service."""
        return f"{self.PROXY_SERVICE_PROTOCOL}://{self.PROXY_SERVICE_HOST}:{self.PROXY_SERVICE_PORT}"

    def get_fallback_proxies(self) -> List[str]:
        """Parse PROXY_FALLBACK_LIST into a list of ``host:port`` strings.

        Returns:
            List of fallback proxy addresses (empty if none configured)
        """
        if not self.PROXY_FALLBACK_LIST:
            return []
        return [p.strip() for p in self.PROXY_FALLBACK_LIST.split(",") if p.strip()]

    def fetch_attempt_budget(self) -> int:
        """Fetch attempts per URL, capped at three."""
        return max(1, min(self.SCRAPING_MAX_ATTEMPTS, 3))


settings = Settings()
