from pydantic_settings import BaseSettings
from typing import Any, List
from pathlib import Path


def parse_csv(v: Any) -> List[str]:
    """Parse a comma-separated string (or list) into a list of strings"""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        return [item.strip() for item in v.split(',') if item.strip()]
    return []


class Settings(BaseSettings):
    """Application settings - all configurable via environment variables"""

    # ==========================================
    # Application
    # ==========================================
    APP_NAME: str = "SchoolFeed"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    API_VERSION: str = "v1"

    # Server Configuration
    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 8000

    # ==========================================
    # Redis
    # ==========================================
    REDIS_URL: str = "redis://localhost:6379/0"

    # ==========================================
    # Persistence (read-state, recovery snapshot, flags)
    # ==========================================
    FEED_STORE_BACKEND: str = "file"  # "redis", "file" or "memory"
    FEED_STORE_PATH: str = ".schoolfeed/store.json"
    FEED_STORE_PREFIX: str = "schoolfeed:"

    # ==========================================
    # Source backend (PostgREST-style REST API)
    # ==========================================
    SOURCE_API_URL: str = ""  # Empty means not connected
    SOURCE_API_KEY: str = ""
    SOURCE_REQUEST_TIMEOUT: float = 15.0

    # ==========================================
    # Live change events
    # ==========================================
    REALTIME_BACKEND: str = "local"  # "redis" or "local"
    REALTIME_CHANNEL_PREFIX: str = "schoolfeed:changes:"

    # ==========================================
    # Feature flags
    # ==========================================
    NOTIFICATIONS_ENABLED: bool = True
    NOTIFICATIONS_SYNC_ENABLED: bool = True
    FEATURE_FLAG_SOURCE: str = "settings"  # "settings" or "store"

    # ==========================================
    # Feed engine
    # ==========================================
    FEED_MAX_ITEMS: int = 500
    FEED_MAX_AGE_DAYS: int = 90
    FEED_MIN_FETCH_INTERVAL: float = 2.0  # seconds between completed fetches
    FEED_CACHE_TTL: float = 10.0  # seconds

    # Per-user feed lifetime in the API service
    FEED_IDLE_TTL: float = 1800.0  # seconds without a request before a feed is closed, 0 disables
    FEED_MAX_ACTIVE: int = 0  # 0 means no cap
    FEED_SWEEP_INTERVAL: float = 60.0  # seconds between idle sweeps

    # Adaptive debounce (seconds)
    DEBOUNCE_BASE_DELAY: float = 0.2
    DEBOUNCE_STEP_DELAY: float = 0.1
    DEBOUNCE_MAX_DELAY: float = 0.8
    DEBOUNCE_BURST_WINDOW: float = 5.0
    DEBOUNCE_MIN_EVENT_INTERVAL: float = 1.0

    # ==========================================
    # CORS (stored as comma-separated string, parsed to list)
    # ==========================================
    CORS_ORIGINS_STR: str = "http://localhost:3000,http://localhost:5173"

    @property
    def CORS_ORIGINS(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return parse_csv(self.CORS_ORIGINS_STR)

    # ==========================================
    # Logging
    # ==========================================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    @property
    def store_path(self) -> Path:
        """Resolve FEED_STORE_PATH against the working directory"""
        return Path(self.FEED_STORE_PATH).expanduser()

    def is_dev_mode(self) -> bool:
        """Check if running in development mode"""
        return self.ENVIRONMENT == "development" or self.DEBUG


# Create settings instance
settings = Settings()
