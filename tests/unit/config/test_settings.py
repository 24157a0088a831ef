"""Unit tests for Settings class and get_settings function."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from toolbox_agent.config import get_settings, reload_settings
from toolbox_agent.config.models.api import APIConfig
from toolbox_agent.config.models.deploy import DeployConfig
from toolbox_agent.config.models.discovery import DiscoveryConfig
from toolbox_agent.config.settings import Settings


class TestSettings:
    """Tests for Settings model."""

    def test_default_values(self) -> None:
        """Settings has sensible defaults."""
        settings = Settings()
        assert settings.app_name == "toolbox-agent"
        assert settings.api.port == 30000
        assert settings.agent.name == "toolbox-agent"
        assert settings.control_plane_token is None

    def test_orchestration_defaults(self) -> None:
        """Deploy, discovery and credential defaults match the documented values."""
        settings = Settings()
        assert settings.deploy.port_range_start == 30100
        assert settings.deploy.port_range_end == 30999
        assert settings.deploy.container_port == 8080
        assert settings.deploy.max_concurrent_deploys == 10
        assert settings.discovery.interval_seconds == 60.0
        assert settings.discovery.failure_threshold == 3
        assert settings.credentials.refresh_floor_seconds == 900
        assert settings.credentials.env_prefix == "AGENTOPIA_OAUTH_"
        assert settings.health.heartbeat_interval_seconds == 15.0

    def test_control_plane_token_is_secret(self, env_override) -> None:
        """The control-plane token never shows in repr."""
        with env_override({"TOOLBOX_AGENT_CONTROL_PLANE_TOKEN": "cp-token-value"}):
            settings = Settings()
        assert settings.control_plane_token is not None
        assert settings.control_plane_token.get_secret_value() == "cp-token-value"
        assert "cp-token-value" not in repr(settings)


class TestSectionValidation:
    """Tests for section validators."""

    def test_cors_origins_from_string(self) -> None:
        """Comma-separated CORS origins are split."""
        config = APIConfig(cors_origins="http://a.test, http://b.test")
        assert config.cors_origins == ["http://a.test", "http://b.test"]

    def test_empty_port_range_rejected(self) -> None:
        """The reserved range may not be inverted."""
        with pytest.raises(ValidationError):
            DeployConfig(port_range_start=31000, port_range_end=30000)

    def test_jitter_must_be_below_interval(self) -> None:
        """Jitter wider than the interval would allow negative sleeps."""
        with pytest.raises(ValidationError):
            DiscoveryConfig(interval_seconds=10, jitter_seconds=10)


class TestGetSettings:
    """Tests for get_settings and overrides."""

    def test_settings_cached(self, test_config_dir: Path, mock_toml_files, env_override) -> None:
        """Repeated calls return the same instance."""
        mock_toml_files({"default.toml": "[agent]\nname = 'cached'"})
        with env_override({"TOOLBOX_AGENT_CONFIG_DIR": str(test_config_dir)}):
            assert get_settings() is get_settings()

    def test_toml_values_applied(self, test_config_dir: Path, mock_toml_files, env_override) -> None:
        """TOML values override model defaults."""
        mock_toml_files({"default.toml": "[deploy]\nport_range_start = 31000\nport_range_end = 31010"})
        with env_override({"TOOLBOX_AGENT_CONFIG_DIR": str(test_config_dir)}):
            settings = get_settings()
        assert settings.deploy.port_range_start == 31000
        assert settings.deploy.port_range_end == 31010

    def test_env_overrides_toml(self, test_config_dir: Path, mock_toml_files, env_override) -> None:
        """Environment variables take precedence over TOML."""
        mock_toml_files({"default.toml": "[agent]\nname = 'from-toml'"})
        with env_override(
            {
                "TOOLBOX_AGENT_CONFIG_DIR": str(test_config_dir),
                "TOOLBOX_AGENT_AGENT__NAME": "from-env",
            }
        ):
            settings = get_settings()
        assert settings.agent.name == "from-env"

    def test_reload_settings_clears_cache(
        self, test_config_dir: Path, mock_toml_files, env_override
    ) -> None:
        """reload_settings picks up changed files."""
        mock_toml_files({"default.toml": "[agent]\nname = 'first'"})
        with env_override({"TOOLBOX_AGENT_CONFIG_DIR": str(test_config_dir)}):
            assert get_settings().agent.name == "first"
            mock_toml_files({"default.toml": "[agent]\nname = 'second'"})
            assert reload_settings().agent.name == "second"
