"""应用配置管理."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """应用配置（环境变量）."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="RETRUI_",
        extra="ignore",
    )

    # 应用配置
    database_url: str = "sqlite+aiosqlite:///./retrui.db"
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )

    # 重试策略：单个 Feed 抓取接口（默认 4 次尝试）
    fetch_max_retries: int = 3
    fetch_timeouts_seconds: list[float] = [15, 30, 45, 60]
    fetch_base_delays_ms: list[int] = [1000, 2000, 4000]
    fetch_jitter_ms: int = 200

    # 重试策略：聚合路径（偏向速度）
    aggregator_max_retries: int = 1
    aggregator_timeouts_seconds: list[float] = [10, 20]
    aggregator_base_delays_ms: list[int] = [500]
    aggregator_jitter_ms: int = 200

    # 重试策略：同步任务（偏向完整性）
    sync_max_retries: int = 3
    sync_timeouts_seconds: list[float] = [15, 30, 45, 60]
    sync_base_delays_ms: list[int] = [1000, 2000, 4000]
    sync_jitter_ms: int = 200

    # 熔断器
    breaker_threshold: int = 3
    breaker_cooldown_minutes: int = 30
    breaker_max_cooldown_minutes: int = 360
    health_record_ttl_days: int = 14

    # 批量聚合
    batch_size: int = 8
    batch_delay_ms: int = 50
    max_news_items: int = 100
    items_per_feed: int = 15
    freshness_window_hours: int = 24

    # 缓存 TTL
    feed_cache_ttl_seconds: int = 5 * 60
    news_cache_ttl_seconds: int = 2 * 60
    content_cache_ttl_seconds: int = 24 * 60 * 60
    cache_backend: str = "sql"  # sql | memory

    # 同步任务
    sync_enabled: bool = True
    sync_interval_minutes: int = 15
    sync_feeds_per_run: int = 30
    sync_batch_size: int = 5
    sync_batch_delay_ms: int = 2000
    news_retention_days: int = 5
    cron_secret: str = ""

    # 全文提取
    content_timeout_seconds: float = 25

    # 安全与限流
    ssrf_resolve_dns: bool = True
    rate_limit_enabled: bool = True
    rate_limit_requests: int = 20
    rate_limit_window_seconds: int = 60


@lru_cache
def get_settings() -> Settings:
    """获取应用配置（带缓存）."""
    return Settings()
