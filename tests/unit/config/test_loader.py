"""Unit tests for locating and layering configuration files."""

from pathlib import Path

import pytest

from toolbox_agent.config import loader
from toolbox_agent.config.loader import (
    config_layers,
    environment_name,
    find_config_dir,
    load_config,
    merge_tables,
)


@pytest.fixture(autouse=True)
def no_system_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep a host-wide /etc/toolbox-agent out of these tests."""
    monkeypatch.setattr(loader, "SYSTEM_CONFIG_DIR", tmp_path / "no-system-config")
    monkeypatch.delenv("TOOLBOX_AGENT_CONFIG_DIR", raising=False)
    monkeypatch.delenv("TOOLBOX_AGENT_ENV", raising=False)


class TestMergeTables:
    """Tests for merge_tables."""

    def test_nested_tables_merge_key_by_key(self) -> None:
        base = {"health": {"heartbeat_interval_seconds": 15.0, "starting_grace_seconds": 30.0}}
        overlay = {"health": {"heartbeat_interval_seconds": 5.0}}
        assert merge_tables(base, overlay) == {
            "health": {"heartbeat_interval_seconds": 5.0, "starting_grace_seconds": 30.0}
        }

    def test_lists_are_replaced(self) -> None:
        """Lists in the overlay replace the base list rather than extend it."""
        assert merge_tables({"command": ["a", "b"]}, {"command": ["c"]}) == {"command": ["c"]}

    def test_inputs_unmodified(self) -> None:
        base = {"env": {"A": "1"}}
        overlay = {"env": {"B": "2"}}
        merge_tables(base, overlay)
        assert base == {"env": {"A": "1"}}
        assert overlay == {"env": {"B": "2"}}


class TestFindConfigDir:
    """Tests for config directory resolution."""

    def test_explicit_dir(self, test_config_dir: Path, env_override) -> None:
        with env_override({"TOOLBOX_AGENT_CONFIG_DIR": str(test_config_dir)}):
            assert find_config_dir() == test_config_dir

    def test_explicit_missing_dir_raises(self, tmp_path: Path, env_override) -> None:
        with env_override({"TOOLBOX_AGENT_CONFIG_DIR": str(tmp_path / "missing")}):
            with pytest.raises(FileNotFoundError):
                find_config_dir()

    def test_system_dir_used_when_populated(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        system = tmp_path / "etc"
        system.mkdir()
        (system / "default.toml").write_text("")
        monkeypatch.setattr(loader, "SYSTEM_CONFIG_DIR", system)
        assert find_config_dir(tmp_path) == system

    def test_nearest_ancestor_config_found(self, mock_toml_files, test_config_dir: Path) -> None:
        """A config/ directory above the start directory is found."""
        mock_toml_files({"default.toml": ""})
        nested = test_config_dir.parent / "src" / "pkg"
        nested.mkdir(parents=True)
        assert find_config_dir(nested) == test_config_dir.resolve()

    def test_config_dir_without_defaults_is_skipped(self, tmp_path: Path) -> None:
        (tmp_path / "config").mkdir()
        assert find_config_dir(tmp_path) is None


class TestEnvironmentName:
    """Tests for environment_name."""

    def test_defaults_to_development(self) -> None:
        assert environment_name() == "development"

    def test_normalized_to_lowercase(self, env_override) -> None:
        with env_override({"TOOLBOX_AGENT_ENV": "Staging"}):
            assert environment_name() == "staging"

    @pytest.mark.parametrize("value", ["../secrets", "prod/eu", ".hidden"])
    def test_path_like_names_rejected(self, value: str, env_override) -> None:
        with env_override({"TOOLBOX_AGENT_ENV": value}):
            with pytest.raises(ValueError):
                environment_name()


class TestConfigLayers:
    """Tests for config_layers."""

    def test_missing_default_raises(self, test_config_dir: Path) -> None:
        with pytest.raises(FileNotFoundError):
            config_layers(test_config_dir, "development")

    def test_layers_in_merge_order(self, test_config_dir: Path, mock_toml_files) -> None:
        mock_toml_files({"default.toml": "", "staging.toml": "", "local.toml": ""})
        assert config_layers(test_config_dir, "staging") == [
            test_config_dir / "default.toml",
            test_config_dir / "staging.toml",
            test_config_dir / "local.toml",
        ]

    def test_absent_overlays_skipped(self, test_config_dir: Path, mock_toml_files) -> None:
        mock_toml_files({"default.toml": ""})
        assert config_layers(test_config_dir, "production") == [test_config_dir / "default.toml"]


class TestLoadConfig:
    """Tests for load_config."""

    def test_layers_merged(self, test_config_dir: Path, mock_toml_files, env_override) -> None:
        """The environment file overrides defaults and local.toml overrides both."""
        mock_toml_files(
            {
                "default.toml": "[health]\nheartbeat_interval_seconds = 15.0\nstarting_grace_seconds = 30.0",
                "staging.toml": "[health]\nheartbeat_interval_seconds = 5.0\nstarting_grace_seconds = 20.0",
                "local.toml": "[health]\nstarting_grace_seconds = 60.0",
            }
        )
        with env_override(
            {"TOOLBOX_AGENT_CONFIG_DIR": str(test_config_dir), "TOOLBOX_AGENT_ENV": "staging"}
        ):
            config = load_config()

        assert config["health"] == {
            "heartbeat_interval_seconds": 5.0,
            "starting_grace_seconds": 60.0,
        }

    def test_no_config_dir_yields_empty(self, tmp_path: Path) -> None:
        assert load_config(tmp_path) == {}

    def test_explicit_dir_without_defaults_raises(
        self, test_config_dir: Path, env_override
    ) -> None:
        with env_override({"TOOLBOX_AGENT_CONFIG_DIR": str(test_config_dir)}):
            with pytest.raises(FileNotFoundError):
                load_config()
