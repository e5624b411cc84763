"""Application configuration via Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

# Resolve .env from the project root regardless of CWD
_ENV_FILE = Path(__file__).resolve().parents[3] / ".env"


class Settings(BaseSettings):
    """Central configuration loaded from environment variables / .env file."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./covertext.db"
    database_echo: bool = False

    # Telnyx
    telnyx_api_key: str = ""
    telnyx_api_base: str = "https://api.telnyx.com/v2"
    telnyx_messaging_profile_id: str = ""
    telnyx_public_key: str = ""
    telnyx_skip_signature: bool = False
    telnyx_signature_tolerance_seconds: int = 300

    # Public URLs (MMS media links must be reachable by the carrier)
    public_base_url: str = "http://localhost:8000"

    # Conversation engine
    session_expiry_minutes: int = 15
    menu_rate_limit_seconds: int = 60
    inbound_rate_limit: int = 10
    inbound_rate_window_minutes: int = 60
    block_notice_interval_hours: int = 24

    # General
    debug: bool = True

    model_config = {"env_file": str(_ENV_FILE), "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def telnyx_configured(self) -> bool:
        """True when outbound messages should go to Telnyx instead of the log."""
        return bool(self.telnyx_api_key)


@lru_cache
def get_settings() -> Settings:
    """Return cached Settings instance."""
    return Settings()
