"""
Tests for settings and startup environment validation.
"""

from app.core.config import Settings, validate_environment


class TestSettingsDefaults:
    def test_defaults(self):
        config = Settings(_env_file=None)

        assert config.DISABLE_SLACK_NOTIFICATIONS is False
        assert config.REMINDER_TIMEZONE == "America/Chicago"
        assert config.SEND_MAX_RETRIES == 3
        assert config.SEND_TIMEOUT_SECONDS == 10.0

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("DISABLE_SLACK_NOTIFICATIONS", "true")
        monkeypatch.setenv("REMINDER_HOUR", "7")

        config = Settings(_env_file=None)

        assert config.DISABLE_SLACK_NOTIFICATIONS is True
        assert config.REMINDER_HOUR == 7


class TestValidateEnvironment:
    def test_all_present(self):
        config = Settings(
            _env_file=None,
            DATABASE_URL="sqlite://",
            SLACK_BOT_TOKEN="xoxb",
            REPLIERS_API_KEY="r",
            OPENAI_API_KEY="o",
        )

        result = validate_environment(config)

        assert result == {"valid": True, "missing": [], "warnings": []}

    def test_missing_optional_is_warning(self):
        config = Settings(_env_file=None, DATABASE_URL="sqlite://", SLACK_BOT_TOKEN="")

        result = validate_environment(config)

        assert result["valid"] is True
        assert any(w.startswith("SLACK_BOT_TOKEN") for w in result["warnings"])

    def test_missing_required_is_invalid(self):
        config = Settings(_env_file=None, DATABASE_URL="")

        result = validate_environment(config)

        assert result["valid"] is False
        assert result["missing"][0].startswith("DATABASE_URL")
