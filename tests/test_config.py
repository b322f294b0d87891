"""Tests for application configuration."""

from raidcall.config import Settings


class TestDurationDefaults:
    def test_defaults(self) -> None:
        settings = Settings(database_url="sqlite+aiosqlite:///:memory:")
        assert settings.run_auto_end_default_minutes == 120
        assert settings.run_auto_end_max_minutes == 1440
        assert settings.key_window_default_seconds == 30
        assert settings.key_window_max_seconds == 300

    def test_default_above_max_is_clamped(self) -> None:
        settings = Settings(
            database_url="sqlite+aiosqlite:///:memory:",
            run_auto_end_default_minutes=600,
            run_auto_end_max_minutes=90,
            key_window_default_seconds=500,
            key_window_max_seconds=60,
        )
        assert settings.run_auto_end_default_minutes == 90
        assert settings.key_window_default_seconds == 60


class TestDurationResolution:
    def test_auto_end_uses_default_when_not_requested(self) -> None:
        settings = Settings(database_url="sqlite+aiosqlite:///:memory:")
        assert settings.auto_end_minutes() == 120
        assert settings.auto_end_minutes(0) == 120
        assert settings.auto_end_minutes(-5) == 120

    def test_auto_end_request_is_bounded(self) -> None:
        settings = Settings(database_url="sqlite+aiosqlite:///:memory:")
        assert settings.auto_end_minutes(45) == 45
        assert settings.auto_end_minutes(5000) == 1440

    def test_key_window_request_is_bounded(self) -> None:
        settings = Settings(database_url="sqlite+aiosqlite:///:memory:")
        assert settings.key_window_seconds() == 30
        assert settings.key_window_seconds(90) == 90
        assert settings.key_window_seconds(10_000) == 300


class TestEnvironment:
    def test_env_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("RAIDCALL_ENV", "production")
        monkeypatch.setenv("KEY_WINDOW_DEFAULT_SECONDS", "45")
        settings = Settings(database_url="sqlite+aiosqlite:///:memory:")
        assert settings.raidcall_env == "production"
        assert settings.key_window_default_seconds == 45

    def test_dungeon_role_pings_from_json(self, monkeypatch) -> None:
        monkeypatch.setenv("DUNGEON_ROLE_PINGS", '{"SHATTERS": "4321", "NEST": "8765"}')
        monkeypatch.setenv("RUN_ROLES_ENABLED", "false")
        settings = Settings(database_url="sqlite+aiosqlite:///:memory:")
        assert settings.dungeon_role_pings == {"SHATTERS": "4321", "NEST": "8765"}
        assert settings.run_roles_enabled is False
