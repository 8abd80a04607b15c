"""
Configuration settings for the Insights CMS backend
"""

from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Server Configuration
    APP_NAME: str = "Insights CMS"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    DEV_MODE: bool = False
    LOG_LEVEL: str = "INFO"
    HOST: str = "0.0.0.0"
    PORT: int = 8001

    # GitHub Contents API (the insights document lives in a repository file)
    GITHUB_TOKEN: str = ""
    GITHUB_OWNER: str = "marion48"
    GITHUB_REPO: str = "Law-Firm-Website"
    GITHUB_BRANCH: str = "main"
    GITHUB_API_URL: str = "https://api.github.com"
    INSIGHTS_FILE_PATH: str = "public/data/insights.json"
    GITHUB_TIMEOUT_SECONDS: float = 10.0
    # Extra read-mutate-write attempts after a stale SHA is rejected
    STORE_CONFLICT_RETRIES: int = 1

    # Admin write API. Empty means the endpoint is open.
    ADMIN_API_TOKEN: str = ""

    # CORS Configuration - public reads are anonymous
    ALLOWED_ORIGINS: str = "*"

    @property
    def allowed_origins_list(self) -> List[str]:
        """Convert comma-separated origins to list"""
        origins = [origin.strip()
                   for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]
        return origins or ["*"]

    # Public site
    SITE_URL: str = "https://yourdomain.com"
    DEFAULT_INSIGHT_IMAGE: str = "/images/default-insight.jpg"

    # Client insights loader
    PUBLIC_INSIGHTS_URL: str = "http://localhost:8001/api/get-insights"
    INSIGHTS_CACHE_TTL_SECONDS: int = 300
    INSIGHTS_REFRESH_INTERVAL_SECONDS: int = 600
    INSIGHTS_FETCH_TIMEOUT_SECONDS: float = 5.0
    INSIGHTS_FALLBACK_PATH: str = ""

    model_config = {"env_file": ".env",
                    "case_sensitive": True, "extra": "allow"}


# Global settings instance
settings = Settings()
