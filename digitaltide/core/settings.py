"""Application settings and configuration."""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    environment: str = Field(default="development", env="ENVIRONMENT")
    log_json: Optional[bool] = Field(default=None, env="LOG_JSON")

    # Aggregation cache (Redis optional, in-memory otherwise)
    redis_url: Optional[str] = Field(default=None, env="REDIS_URL")
    cache_ttl_seconds: int = Field(default=300, env="CACHE_TTL_SECONDS")
    cache_max_entries: int = Field(default=500, env="CACHE_MAX_ENTRIES")

    # Source fan-out
    fetch_timeout_seconds: float = Field(default=10.0, env="FETCH_TIMEOUT_SECONDS")
    max_concurrent_sources: int = Field(default=8, env="MAX_CONCURRENT_SOURCES")
    sources_config_path: str = Field(default="config/sources.yaml", env="SOURCES_CONFIG_PATH")
    newsapi_key: str = Field(default="", env="NEWSAPI_KEY")

    # Source reputation
    reputation_alpha: float = Field(default=0.3, env="REPUTATION_ALPHA")
    failure_threshold: int = Field(default=3, env="FAILURE_THRESHOLD")
    failure_cooldown_seconds: float = Field(default=300.0, env="FAILURE_COOLDOWN_SECONDS")

    # Aggregation defaults
    default_source_priority: str = Field(default="balanced", env="DEFAULT_SOURCE_PRIORITY")
    default_min_credibility: float = Field(default=0.0, env="DEFAULT_MIN_CREDIBILITY")
    default_limit: int = Field(default=50, env="DEFAULT_LIMIT")

    # Monitoring
    monitor_interval_seconds: float = Field(default=300.0, env="MONITOR_INTERVAL_SECONDS")
    monitor_max_tracked: int = Field(default=5000, env="MONITOR_MAX_TRACKED")

    # Duplicate detection
    near_duplicate_threshold: float = Field(default=0.85, env="NEAR_DUPLICATE_THRESHOLD")
    similar_threshold: float = Field(default=0.5, env="SIMILAR_THRESHOLD")
    title_weight: float = Field(default=0.3, env="DUP_TITLE_WEIGHT")
    content_weight: float = Field(default=0.5, env="DUP_CONTENT_WEIGHT")
    url_weight: float = Field(default=0.2, env="DUP_URL_WEIGHT")
    similarity_cache_size: int = Field(default=1000, env="SIMILARITY_CACHE_SIZE")

    # Trending
    trend_min_mentions: int = Field(default=3, env="TREND_MIN_MENTIONS")
    trend_min_velocity: float = Field(default=0.5, env="TREND_MIN_VELOCITY")
    trend_velocity_weight: float = Field(default=0.4, env="TREND_VELOCITY_WEIGHT")
    trend_volume_weight: float = Field(default=0.3, env="TREND_VOLUME_WEIGHT")
    trend_recency_weight: float = Field(default=0.2, env="TREND_RECENCY_WEIGHT")
    trend_credibility_weight: float = Field(default=0.1, env="TREND_CREDIBILITY_WEIGHT")
    trend_history_stale_hours: float = Field(default=72.0, env="TREND_HISTORY_STALE_HOURS")

    # Credibility
    credibility_history_size: int = Field(default=100, env="CREDIBILITY_HISTORY_SIZE")

    class Config:
        """Pydantic config."""
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get settings singleton."""
    return Settings()
