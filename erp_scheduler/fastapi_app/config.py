"""
FastAPI Configuration using Pydantic Settings.

Scheduler, notification queue and delivery settings are all read from the
environment (or `.env`), so the API process and the worker threads it owns
share one view of the configuration.
"""

import os
from functools import lru_cache
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_name: str = "ERP Scheduler API"
    app_version: str = "1.0.0"
    debug: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 8001
    log_level: str = "info"

    # Database
    database_url: str = ""
    testing: bool = False

    def model_post_init(self, __context):
        """Post-initialization hook to check environment variables."""
        if os.getenv('TESTING', '').lower() in ('true', '1', 'yes'):
            self.testing = True

    # CORS
    cors_origins: str = "*"

    # Scheduler
    scheduler_enabled: bool = True
    scheduler_timezone: str = "Asia/Riyadh"
    scheduler_tick_seconds: int = 30
    scheduler_max_execution_seconds: int = 600
    scheduler_max_workers: int = 5
    scheduler_lock_path: str = ""
    scheduler_lock_stale_seconds: int = 0
    scheduler_execution_history_limit: int = 200

    # Notification queue
    notification_queue_enabled: bool = True
    notification_queue_poll_seconds: float = 1.0
    notification_queue_max_concurrency: int = 3
    notification_default_max_attempts: int = 3
    notification_base_retry_delay_seconds: float = 1.0
    notification_max_retry_delay_seconds: float = 60.0
    notification_sent_retention_hours: int = 24
    notification_dead_retention_days: int = 7

    # ERP application (job handlers call its internal endpoints)
    erp_base_url: str = "http://localhost:3000"
    erp_internal_token: str = ""
    erp_request_timeout_seconds: float = 120.0

    # Email
    mail_server: str = ""
    mail_port: int = 587
    mail_use_tls: bool = True
    mail_username: str = ""
    mail_password: str = ""
    mail_default_sender: str = "info@symbolai.net"
    mail_enabled: bool = True

    # Slack
    slack_webhook_url: str = ""
    slack_channel: str = ""

    # Error handling. Unset means: expose details everywhere except production.
    environment: str = "development"
    expose_error_details: Optional[bool] = None

    def __init__(self, **kwargs):
        super().__init__(**kwargs)

        if self.expose_error_details is None:
            self.expose_error_details = self.environment.lower() != "production"

        if not self.database_url:
            base_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
            if self.testing:
                db_path = os.path.join(base_dir, "instance", "scheduler_test.db")
            else:
                db_path = os.path.join(base_dir, "instance", "scheduler.db")
            self.database_url = f"sqlite:///{db_path}"

        # Export the resolved URL for lower-level shared database utilities.
        os.environ.setdefault("DATABASE_URL", self.database_url)

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
