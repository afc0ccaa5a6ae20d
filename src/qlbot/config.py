"""Configuration management for the Qinglong bot."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Bot config directory
QLBOT_DIR = Path.home() / ".qlbot"
QLBOT_ENV_FILE = QLBOT_DIR / ".env"

DEFAULT_EXTENSIONS = ["js", "py", "sh", "ts", "mjs", "txt"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="QLBOT_",
        # Later files override earlier ones
        env_file=(str(QLBOT_ENV_FILE), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Telegram settings
    telegram_bot_token: str = Field(
        default="",
        description="Telegram bot token from @BotFather",
    )
    telegram_api_root: str = Field(
        default="https://api.telegram.org",
        description="Telegram Bot API root (for self-hosted API servers)",
    )
    telegram_proxy: str = Field(
        default="",
        description="HTTP(S) proxy URL used to reach Telegram",
    )

    # Qinglong panel settings
    qinglong_url: str = Field(
        default="",
        description="Qinglong panel URL (e.g., http://localhost:5700)",
    )
    qinglong_client_id: str = Field(
        default="",
        description="Qinglong OpenAPI application client ID",
    )
    qinglong_client_secret: str = Field(
        default="",
        description="Qinglong OpenAPI application client secret",
    )

    # Workflow settings
    session_timeout_seconds: float = Field(
        default=120,
        description="Time allowed for sending edited task parameters",
    )
    notice_ttl_seconds: float = Field(
        default=10,
        description="How long short-lived notices stay in the chat",
    )
    supported_extensions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EXTENSIONS),
        description="File extensions accepted for upload",
    )
    default_schedule: str = Field(
        default="0 0 * * *",
        description="Schedule used when no cron expression is found in the script",
    )
    command_template: str = Field(
        default="task {file_name}",
        description="Command template for new tasks; {file_name} is substituted",
    )
    download_retries: int = Field(
        default=3,
        description="Attempts for fetching an uploaded file from Telegram",
    )

    def telegram_configured(self) -> bool:
        """Check whether a bot token is available."""
        return bool(self.telegram_bot_token)

    def qinglong_configured(self) -> bool:
        """Check whether all Qinglong credentials are available."""
        return bool(
            self.qinglong_url
            and self.qinglong_client_id
            and self.qinglong_client_secret
        )


# Global settings instance
settings = Settings()
