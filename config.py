"""
Configuration module for Outflow Watcher.
Loads environment variables and provides application settings.
"""
from pathlib import Path
from typing import Optional

import base58
from pydantic import ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.errors import ConfigError
from core.models import DigitPolicy


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Solana
    rpc_url: str
    watch_address: str
    commitment: str = "confirmed"
    rpc_timeout: float = 15.0

    # Alert destinations (at least one required)
    discord_webhook_url: Optional[str] = None
    discord_ping: str = ""  # e.g. "@everyone" or "<@&role_id>"
    webhook_timeout: float = 20.0
    bot_token: Optional[str] = None
    # Format: "chat_id" or "chat_id:thread_id" for topics
    alert_chat_id: Optional[str] = None

    # Polling
    poll_seconds: float = 10.0
    sig_fetch_limit: int = 60

    # Pattern rule
    min_sol: float = 0.1
    max_sol: float = 20.0
    window_outflows: int = 10
    required_match: int = 3
    preview_dest_limit: int = 10
    digit_policy: DigitPolicy = DigitPolicy.TRUNCATE
    fresh_destination_gate: bool = False
    # Count net balance decreases without a decoded transfer as outflows
    count_balance_outflows: bool = False

    # Database Configuration
    database_path: str = "./data/outflow_watcher.db"

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("watch_address")
    @classmethod
    def _check_watch_address(cls, value: str) -> str:
        value = value.strip()
        try:
            raw = base58.b58decode(value)
        except ValueError:
            raise ValueError(f"not a base58 address: {value!r}")
        if len(raw) != 32:
            raise ValueError(f"address must decode to 32 bytes, got {len(raw)}")
        return value

    @field_validator("poll_seconds", "rpc_timeout", "webhook_timeout")
    @classmethod
    def _check_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("sig_fetch_limit", "window_outflows", "required_match", "preview_dest_limit")
    @classmethod
    def _check_count(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @model_validator(mode="after")
    def _check_consistency(self) -> "Settings":
        if self.min_sol < 0 or self.min_sol > self.max_sol:
            raise ValueError(f"invalid SOL range [{self.min_sol}, {self.max_sol}]")
        if self.required_match > self.window_outflows:
            raise ValueError(
                f"required_match ({self.required_match}) exceeds window_outflows ({self.window_outflows})"
            )
        if not self.discord_webhook_url and not (self.bot_token and self.alert_chat_id):
            raise ValueError("set DISCORD_WEBHOOK_URL or both BOT_TOKEN and ALERT_CHAT_ID")
        return self


def get_settings() -> Settings:
    """
    Get application settings.

    Raises:
        ConfigError: if required settings are missing or invalid
    """
    try:
        return Settings()
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigError(f"Invalid configuration: {problems}") from e


# Create data directory if it doesn't exist
def ensure_data_directory(settings: Optional[Settings] = None):
    """Ensure the data directory exists for the database."""
    settings = settings or get_settings()
    db_path = Path(settings.database_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
