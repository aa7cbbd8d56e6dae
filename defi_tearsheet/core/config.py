from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    PROJECT_NAME: str = "defi-tearsheet"

    # Credentials (absence means free tier only)
    DEFILLAMA_API_KEY: Optional[str] = None
    COINGECKO_API_KEY: Optional[str] = None

    # Provider hosts
    DEFILLAMA_PRO_BASE_URL: str = "https://pro-api.llama.fi"
    DEFILLAMA_FREE_BASE_URL: str = "https://api.llama.fi"
    DEFILLAMA_COINS_BASE_URL: str = "https://coins.llama.fi"
    COINGECKO_PRO_BASE_URL: str = "https://pro-api.coingecko.com/api/v3"
    COINGECKO_FREE_BASE_URL: str = "https://api.coingecko.com/api/v3"

    # Transport
    REQUEST_TIMEOUT_SECONDS: float = 20.0
    RATE_LIMIT_RETRY_ATTEMPTS: int = 3
    RATE_LIMIT_BACKOFF_SECONDS: float = 2.0

    # Pipeline
    HISTORY_YEARS: int = 6
    PROTOCOLS_CSV_PATH: Optional[str] = None

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        extra="ignore"
    )

@lru_cache()
def get_settings():
    return Settings()
