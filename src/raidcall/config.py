"""Application settings via pydantic-settings. Loads from environment and .env file."""

from __future__ import annotations

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """raidcall configuration.

    All values can be overridden via environment variables or .env file.
    """

    # Discord
    discord_bot_token: str = ""
    discord_guild_id: str = ""
    discord_enabled: bool = False
    discord_organizer_role_id: str = ""
    # Give each run a temporary role that raiders hold while joined.
    run_roles_enabled: bool = True
    # Dungeon key -> role id mentioned when a run for that dungeon goes live.
    # Set as JSON, e.g. DUNGEON_ROLE_PINGS='{"SHATTERS": "1234"}'.
    dungeon_role_pings: dict[str, str] = {}

    # Database
    database_url: str = "sqlite+aiosqlite:///raidcall.db"

    # Environment
    raidcall_env: str = "development"

    # Run timing
    run_auto_end_default_minutes: int = 120
    run_auto_end_max_minutes: int = 1440  # 24 hours
    key_window_default_seconds: int = 30
    key_window_max_seconds: int = 300

    # Scheduler
    auto_end_enabled: bool = True
    auto_end_interval_seconds: int = 60

    # Logging
    raidcall_log_level: str = "INFO"

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    @model_validator(mode="after")
    def _clamp_defaults_to_maximums(self) -> Settings:
        """A default larger than its configured ceiling is silently lowered to the ceiling."""
        if self.run_auto_end_default_minutes > self.run_auto_end_max_minutes:
            self.run_auto_end_default_minutes = self.run_auto_end_max_minutes
        if self.key_window_default_seconds > self.key_window_max_seconds:
            self.key_window_default_seconds = self.key_window_max_seconds
        return self

    def auto_end_minutes(self, requested: int | None = None) -> int:
        """Resolve an auto-end duration: the request (or default), bounded by the max."""
        minutes = requested if requested and requested > 0 else self.run_auto_end_default_minutes
        return min(minutes, self.run_auto_end_max_minutes)

    def key_window_seconds(self, requested: int | None = None) -> int:
        """Resolve a key-window duration: the request (or default), bounded by the max."""
        seconds = requested if requested and requested > 0 else self.key_window_default_seconds
        return min(seconds, self.key_window_max_seconds)
