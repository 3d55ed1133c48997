from datetime import timezone, tzinfo
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime settings.

    Loading priority (highest to lowest):
    1. Environment variables prefixed with ``ARTQR_``
    2. .env file
    3. Defaults below
    """

    # Storage
    database_url: str = "sqlite:///./analytics.db"

    # Short links
    base_url: str = "http://localhost:3000"
    short_path: str = "/s/"
    key_length: int = 8  # 64-symbol alphabet, 48 bits

    # Rendering
    output_size: int = 1024
    max_upload_bytes: int = 16 * 1024 * 1024

    # Dashboard
    free_link_limit: int = 2
    report_timezone: str = "UTC"

    # Logging
    log_level: str = "INFO"
    log_file: str | None = None
    json_logs: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 3000

    model_config = SettingsConfigDict(
        env_prefix="ARTQR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def report_tz(self) -> tzinfo:
        if self.report_timezone.upper() == "UTC":
            return timezone.utc
        return ZoneInfo(self.report_timezone)
