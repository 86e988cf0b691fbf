from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    app_name: str = "UptimeGuard"
    app_version: str = "0.1.0"
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///./uptimeguard.db"

    # Email (SMTP)
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from_email: str = "alerts@uptimeguard.local"
    smtp_use_tls: bool = True

    # Telegram
    telegram_bot_token: str = ""

    # Monitoring defaults
    default_check_interval: int = 60  # seconds
    default_timeout: int = 30  # seconds
    max_concurrent_checks: int = 10  # worker budget across all monitors
    check_on_start: bool = True  # first check fires immediately on schedule
    monitor_poll_interval: float = 5.0  # seconds between active-monitor polls
    drain_timeout: float = 30.0  # seconds to wait for in-flight checks on shutdown

    # Incidents
    notification_reminder_interval: int = 60 * 60  # 1 hour

    # Repository writes
    repository_write_attempts: int = 3
    repository_retry_delay: float = 1.0  # seconds

    # Stats and retention
    stats_refresh_interval: int = 5 * 60  # 5 minutes
    heartbeat_retention_days: int = 365

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
