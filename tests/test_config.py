import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from workflow_api.config import LogLevel, Settings


class TestSettings:
    """Test Settings configuration loading and validation."""

    @patch.dict(os.environ, {}, clear=True)
    def test_default_settings(self):
        settings = Settings(_env_file=None)

        assert settings.api_title == "Workflow Manager API"
        assert settings.api_version == "0.1.0"
        assert settings.allow_origins == ["*"]
        assert settings.log_level == LogLevel.INFO
        assert settings.github_api_url == "https://api.github.com"
        assert settings.github_api_version == "2022-11-28"
        assert settings.github_token is None
        assert settings.request_timeout == 15
        assert settings.publish_timeout == 60
        assert settings.read_retry_attempts == 3
        assert settings.reusable_workflows_repo == "Calance-US/calance-workflows"
        assert settings.verify_generated_yaml is True
        assert settings.history_limit == 1000
        assert not settings.default_token_configured

    @patch.dict(
        os.environ,
        {
            "APP_API_TITLE": "Custom API Title",
            "APP_LOG_LEVEL": "debug",
            "APP_GITHUB_TOKEN": "ghp_env",
            "APP_REQUEST_TIMEOUT": "5",
        },
    )
    def test_environment_override(self):
        settings = Settings(_env_file=None)

        assert settings.api_title == "Custom API Title"
        assert settings.log_level == LogLevel.DEBUG
        assert settings.github_token == "ghp_env"
        assert settings.request_timeout == 5
        assert settings.default_token_configured

    @patch.dict(
        os.environ,
        {"APP_ALLOW_ORIGINS": '["https://example.com", "https://app.example.com"]'},
    )
    def test_list_environment_variables(self):
        settings = Settings(_env_file=None)

        assert settings.allow_origins == ["https://example.com", "https://app.example.com"]

    def test_trailing_slash_stripped(self):
        settings = Settings(_env_file=None, github_api_url="https://ghe.acme.io/api/v3/")

        assert settings.github_api_url == "https://ghe.acme.io/api/v3"

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, log_level="LOUD")

    @pytest.mark.parametrize("field,value", [("request_timeout", 0), ("publish_timeout", 5), ("read_retry_attempts", 9)])
    def test_bounds(self, field, value):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: value})

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("APP_PR_SIGNATURE=Acme Bot\nAPP_VERIFY_GENERATED_YAML=false\n")

        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=str(env_file))

        assert settings.pr_signature == "Acme Bot"
        assert settings.verify_generated_yaml is False
