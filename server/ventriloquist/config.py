"""Configuration helpers for the ventriloquist bridge."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


LAUNCH_POLICIES = ("replace", "keep")


@dataclass
class Settings:
    """Centralized environment-driven configuration.

    Values are read once at import time; tests reload this module after
    patching the environment.
    """

    # LINE Messaging API
    line_channel_access_token: Optional[str] = os.getenv("LINE_CHANNEL_ACCESS_TOKEN")
    line_channel_secret: Optional[str] = os.getenv("LINE_CHANNEL_SECRET")
    line_api_base_url: str = os.getenv("LINE_API_BASE_URL", "https://api.line.me")
    line_request_timeout: float = float(os.getenv("LINE_REQUEST_TIMEOUT", "10"))

    # Clova Extension Kit
    silent_audio_url: str = os.getenv("SILENT_AUDIO_URL", "https://example.com/audio/silent.mp3")
    speech_lang: str = os.getenv("SPEECH_LANG", "en")

    # Instance persistence
    supabase_url: Optional[str] = os.getenv("SUPABASE_URL")
    supabase_service_role_key: Optional[str] = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    supabase_instances_table: str = os.getenv("SUPABASE_INSTANCES_TABLE", "orchestration_instances")

    # Session orchestration
    session_launch_policy: str = os.getenv("SESSION_LAUNCH_POLICY", "replace")
    chat_poll_interval: float = float(os.getenv("CHAT_POLL_INTERVAL", "0.5"))
    chat_poll_timeout: float = float(os.getenv("CHAT_POLL_TIMEOUT", "20"))

    # Housekeeping
    history_retention_days: int = int(os.getenv("HISTORY_RETENTION_DAYS", "1"))
    history_purge_hour_utc: int = int(os.getenv("HISTORY_PURGE_HOUR_UTC", "12"))

    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8000"))

    def __post_init__(self) -> None:
        self.session_launch_policy = self.session_launch_policy.strip().lower()
        if self.session_launch_policy not in LAUNCH_POLICIES:
            raise ValueError(
                f"SESSION_LAUNCH_POLICY must be one of {', '.join(LAUNCH_POLICIES)}; "
                f"got {self.session_launch_policy!r}"
            )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance to avoid repeated environment reads."""

    return Settings()


settings = get_settings()
